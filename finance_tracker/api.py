"""
HTTP API for the Finance Tracker

A thin FastAPI layer over the components built by the orchestrator.
Handlers translate HTTP to engine calls and engine errors back to
status codes; they hold no logic of their own.

DESIGN DECISION: Every expense write goes through the consistency
engine. No route touches a store directly.

Status mapping:
- ValidationError / malformed body -> 400
- InvalidCredentials / InvalidToken -> 401
- OwnerNotFound / ExpenseNotFound -> 404
- EmailAlreadyRegistered -> 409
- StorageError -> 503
"""

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from finance_tracker.config import get_settings
from finance_tracker.consistency import ExpenseNotFound, OwnerNotFound, ValidationError
from finance_tracker.models.expense import Expense
from finance_tracker.models.user import UserPublic, UserRegistration
from finance_tracker.orchestrator import AppComponents, create_app_components
from finance_tracker.services.accounts import (
    EmailAlreadyRegistered,
    InvalidCredentials,
    InvalidToken,
    TokenClaims,
)
from finance_tracker.services.storage import StorageError
from finance_tracker.validation import ReconciliationReport


logger = structlog.get_logger(__name__)

bearer = HTTPBearer(auto_error=False)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ExpenseCreateRequest(BaseModel):
    name: str
    cost: Decimal


class CostUpdateRequest(BaseModel):
    cost: Decimal


def get_components(request: Request) -> AppComponents:
    return request.app.state.components


def require_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    components: AppComponents = Depends(get_components),
) -> TokenClaims:
    """Resolve the bearer token into verified claims, or 401."""
    if credentials is None:
        raise InvalidToken("Missing bearer token")
    return components.accounts.decode_token(credentials.credentials)


def _error(status_code: int, detail: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(ValidationError)
    def handle_validation(request: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), issues=exc.issues)

    @app.exception_handler(RequestValidationError)
    def handle_request_validation(request: Request, exc: RequestValidationError):
        issues = [
            {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
            for e in exc.errors()
        ]
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid request", issues=issues)

    @app.exception_handler(OwnerNotFound)
    def handle_owner_not_found(request: Request, exc: OwnerNotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(ExpenseNotFound)
    def handle_expense_not_found(request: Request, exc: ExpenseNotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(EmailAlreadyRegistered)
    def handle_duplicate_email(request: Request, exc: EmailAlreadyRegistered):
        return _error(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(InvalidCredentials)
    def handle_bad_credentials(request: Request, exc: InvalidCredentials):
        return _error(status.HTTP_401_UNAUTHORIZED, str(exc))

    @app.exception_handler(InvalidToken)
    def handle_bad_token(request: Request, exc: InvalidToken):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Invalid or missing token"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(StorageError)
    def handle_storage_error(request: Request, exc: StorageError):
        request.app.state.components.audit_logger.log_error(
            error_type=type(exc).__name__,
            error_message=str(exc),
            details={"path": request.url.path, "method": request.method},
        )
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Storage unavailable")


def create_app(components: Optional[AppComponents] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        components: Pre-built components (tests pass in-memory ones).
                    If None, they are created from settings at startup
                    and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = components is None
        app.state.components = create_app_components() if owned else components
        try:
            yield
        finally:
            if owned:
                app.state.components.close()

    app = FastAPI(title=get_settings().app.app_name, lifespan=lifespan)
    _register_error_handlers(app)

    @app.get("/")
    def root():
        return {"app": get_settings().app.app_name, "status": "ok"}

    # Users

    @app.post("/api/users/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
    def register(payload: UserRegistration, components: AppComponents = Depends(get_components)):
        user = components.accounts.register(payload)
        return user.to_public()

    @app.post("/api/users/login", response_model=TokenResponse)
    def login(payload: LoginRequest, components: AppComponents = Depends(get_components)):
        token = components.accounts.authenticate(payload.email, payload.password)
        return TokenResponse(access_token=token)

    @app.get("/api/users/list", response_model=list[UserPublic])
    def list_users(components: AppComponents = Depends(get_components)):
        return [u.to_public() for u in components.queries.list_users()]

    @app.get("/api/users/{user_id}", response_model=UserPublic)
    def get_user(user_id: str, components: AppComponents = Depends(get_components)):
        user = components.queries.get_user(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
        return user.to_public()

    # Expenses

    @app.get("/api/expenses/list", response_model=list[Expense])
    def list_expenses(
        owner_id: Optional[str] = None,
        components: AppComponents = Depends(get_components),
    ):
        return components.queries.list_expenses(owner_id)

    @app.get("/api/expenses/{expense_id}", response_model=Expense)
    def get_expense(expense_id: str, components: AppComponents = Depends(get_components)):
        expense = components.queries.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFound(expense_id)
        return expense

    @app.post("/api/expenses/add/{user_id}", response_model=Expense, status_code=status.HTTP_201_CREATED)
    def add_expense(
        user_id: str,
        payload: ExpenseCreateRequest,
        claims: TokenClaims = Depends(require_token),
        components: AppComponents = Depends(get_components),
    ):
        expense = components.engine.add_expense(user_id, payload.name, payload.cost)
        logger.info("expense_created_via_api", expense_id=expense.id, requested_by=claims.user_id)
        return expense

    @app.patch("/api/expenses/{expense_id}", response_model=Expense)
    def update_expense_cost(
        expense_id: str,
        payload: CostUpdateRequest,
        claims: TokenClaims = Depends(require_token),
        components: AppComponents = Depends(get_components),
    ):
        return components.engine.update_expense_cost(expense_id, payload.cost)

    @app.delete("/api/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_expense(
        expense_id: str,
        claims: TokenClaims = Depends(require_token),
        components: AppComponents = Depends(get_components),
    ):
        components.engine.delete_expense(expense_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Reconciliation

    @app.get("/api/reconciliation", response_model=ReconciliationReport)
    def scan(
        owner_id: Optional[str] = None,
        claims: TokenClaims = Depends(require_token),
        components: AppComponents = Depends(get_components),
    ):
        return components.reconciler.scan(owner_id)

    @app.post("/api/reconciliation/repair", response_model=ReconciliationReport)
    def repair(
        owner_id: Optional[str] = None,
        claims: TokenClaims = Depends(require_token),
        components: AppComponents = Depends(get_components),
    ):
        return components.reconciler.repair(owner_id)

    @app.get("/api/reconciliation/divergences")
    def recorded_divergences(
        limit: int = 100,
        claims: TokenClaims = Depends(require_token),
        components: AppComponents = Depends(get_components),
    ):
        return [e.to_log_dict() for e in components.reconciler.recorded_divergences(limit)]

    return app
