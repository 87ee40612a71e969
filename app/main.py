import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, Request, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app import storage
from app.auth import AuthService, get_auth_service, get_principal
from app.config import settings
from app.errors import MessagelyError
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_auth_data
from app.metrics import get_metrics, get_metrics_content_type
from app.policy import ensure_can_read, ensure_can_mark_read, ensure_correct_user
from app.storage import init_db, check_db_health, get_db
from app.schemas import (
    HealthResponse,
    LoginRequest,
    RegisterRequest,
    SendMessageRequest,
    TokenResponse,
    ErrorResponse,
    UsersListResponse,
    UserDetailResponse,
    SentMessagesResponse,
    ReceivedMessagesResponse,
    MessageDetailResponse,
    MessageCreatedResponse,
    MessageReadResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Messagely API",
    description="Authenticated user-to-user messaging with read receipts",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(MessagelyError)
async def messagely_error_handler(request: Request, exc: MessagelyError) -> JSONResponse:
    logger.warning(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


AUTH_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing/invalid token or not allowed"},
}


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. SECRET_KEY is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.SECRET_KEY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="SECRET_KEY not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Auth Routes
# =============================================================================

@app.post(
    "/auth/login",
    response_model=TokenResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid username/password"}},
)
@app.post("/login", response_model=TokenResponse, include_in_schema=False)
def login(
    request: Request,
    data: LoginRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """
    Log in: {username, password} => {token}.

    Updates the user's last_login_at on success.
    """
    try:
        token = auth.login(db, data.username, data.password)
    except MessagelyError:
        log_auth_data(request, username=data.username, result="invalid_credentials")
        raise

    log_auth_data(request, username=data.username, result="success")
    return TokenResponse(token=token)


@app.post(
    "/auth/register",
    response_model=TokenResponse,
    responses={400: {"model": ErrorResponse, "description": "Duplicate username"}},
)
@app.post("/register", response_model=TokenResponse, include_in_schema=False)
def register(
    request: Request,
    data: RegisterRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """
    Register, log in and return a token.

    {username, password, first_name, last_name, phone} => {token}
    """
    try:
        token = auth.register(db, **data.model_dump())
    except MessagelyError:
        log_auth_data(request, username=data.username, result="duplicate")
        raise

    log_auth_data(request, username=data.username, result="success")
    return TokenResponse(token=token)


# =============================================================================
# User Routes
# =============================================================================

@app.get("/users", response_model=UsersListResponse, responses=AUTH_ERRORS)
def list_users(
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
) -> UsersListResponse:
    """List all users: {users: [{username, first_name, last_name, phone}, ...]}."""
    return UsersListResponse(users=storage.all_users(db))


@app.get("/users/{username}", response_model=UserDetailResponse, responses=AUTH_ERRORS)
def user_detail(
    username: str,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
) -> UserDetailResponse:
    """Profile of the logged-in user, including join_at and last_login_at."""
    ensure_correct_user(principal, username)
    return UserDetailResponse(user=storage.get_user(db, username))


@app.get("/users/{username}/to", response_model=ReceivedMessagesResponse, responses=AUTH_ERRORS)
def user_inbox(
    username: str,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
) -> ReceivedMessagesResponse:
    """Messages sent to the logged-in user, oldest first."""
    ensure_correct_user(principal, username)
    return ReceivedMessagesResponse(messages=storage.messages_to(db, username))


@app.get("/users/{username}/from", response_model=SentMessagesResponse, responses=AUTH_ERRORS)
def user_outbox(
    username: str,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
) -> SentMessagesResponse:
    """Messages sent by the logged-in user, oldest first."""
    ensure_correct_user(principal, username)
    return SentMessagesResponse(messages=storage.messages_from(db, username))


# =============================================================================
# Message Routes
# =============================================================================

@app.get(
    "/messages/{message_id}",
    response_model=MessageDetailResponse,
    responses={**AUTH_ERRORS, 404: {"model": ErrorResponse, "description": "No such message"}},
)
def message_detail(
    message_id: int,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
) -> MessageDetailResponse:
    """
    Get detail of a message.

    => {message: {id, body, sent_at, read_at, from_user, to_user}}

    Only the sender and the recipient may view it.
    """
    message = storage.get_message(db, message_id)
    ensure_can_read(principal, message)
    return MessageDetailResponse(message=message)


@app.post(
    "/messages",
    response_model=MessageCreatedResponse,
    responses={**AUTH_ERRORS, 404: {"model": ErrorResponse, "description": "No such recipient"}},
)
def send_message(
    data: SendMessageRequest,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
) -> MessageCreatedResponse:
    """
    Send a message from the logged-in user.

    {to_username, body} => {message: {id, from_username, to_username, body, sent_at}}
    """
    message = storage.create_message(
        db,
        from_username=principal,
        to_username=data.to_username,
        body=data.body,
    )
    return MessageCreatedResponse(message=message)


@app.post(
    "/messages/{message_id}/read",
    response_model=MessageReadResponse,
    responses={**AUTH_ERRORS, 404: {"model": ErrorResponse, "description": "No such message"}},
)
def mark_message_read(
    message_id: int,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
) -> MessageReadResponse:
    """
    Mark a message as read: => {message: {id, read_at}}.

    Only the recipient may do this.
    """
    message = storage.get_message(db, message_id)
    ensure_can_mark_read(principal, message)
    return MessageReadResponse(message=storage.mark_read(db, message_id))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
