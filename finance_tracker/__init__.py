"""
Finance Tracker - Source Package

Keeps canonical expense records and the expense summaries embedded in
user documents consistent, without multi-document transactions.

DESIGN PRINCIPLES:
1. The canonical record is the source of truth
2. Canonical write first, summary write second
3. Divergences are recorded, never hidden
4. Every write is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
