"""
Server entry point for the Finance Tracker API.

Run with:
    uvicorn app.main:app
or:
    python -m app.main

Storage backend, log level and secrets come from the environment
(see finance_tracker.config.settings).
"""

import uvicorn

from finance_tracker.api import create_app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
