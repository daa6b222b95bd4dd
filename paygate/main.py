from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from paygate_common.utils import get_db_client, settings, Settings, ErrorResponse, HealthResponse
from paygate_common.logging_config import setup_logging, RequestLoggingMiddleware
from paygate_common.security_config import SecurityHeadersMiddleware

from paygate.errors import (
    PaymentError, UnauthenticatedError, ForbiddenError, NotFoundError,
    ValidationError, MalformedPayloadError, InvalidSignatureError,
    TransactionNotCancellableError, GatewayError, GatewayTimeoutError,
)
from paygate.gateway import PaymentGateway, build_gateway
from paygate.routes import auth, payments
from paygate.service import PaymentService
from paygate.store import InMemoryTransactionStore, MongoTransactionStore, TransactionStore
from paygate.users import (
    InMemoryRevokedTokenStore, InMemoryUserDirectory, MongoRevokedTokenStore,
    MongoUserDirectory, RevokedTokenStore, UserDirectory,
)

VERSION = "1.0.0"

# Setup Logging
logger = setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)

# Most specific class first; anything else is an InternalError -> 500
ERROR_STATUS_CODES = (
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (MalformedPayloadError, status.HTTP_400_BAD_REQUEST),
    (InvalidSignatureError, status.HTTP_400_BAD_REQUEST),
    (TransactionNotCancellableError, status.HTTP_409_CONFLICT),
    (GatewayTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
)


def status_code_for(exc: PaymentError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def payment_error_handler(request: Request, exc: PaymentError):
    status_code = status_code_for(exc)
    extra = {"error_code": exc.error_code, "request_id": getattr(request.state, "request_id", None)}
    if status_code >= 500:
        logger.error(f"Payment error: {exc.message}", extra=extra, exc_info=exc)
    else:
        logger.warning(f"Payment error: {exc.message}", extra=extra)

    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


# Codes for errors raised as HTTPException (identity routes, bearer checks, routing)
HTTP_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: "bad_request",
    status.HTTP_401_UNAUTHORIZED: UnauthenticatedError.error_code,
    status.HTTP_403_FORBIDDEN: ForbiddenError.error_code,
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error(f"HTTP error: {exc.detail}", extra={"status_code": exc.status_code})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
            details={"message": exc.detail},
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="validation_error", details=errors).model_dump(),
    )


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="internal_error", details="An unexpected error occurred").model_dump(),
    )


async def _build_storage(app: FastAPI, config: Settings) -> None:
    if config.STORAGE_BACKEND == "memory":
        logger.warning("Using in-memory storage; data is lost on restart")
        app.state.store = app.state.store or InMemoryTransactionStore()
        app.state.users = app.state.users or InMemoryUserDirectory()
        app.state.revoked_tokens = app.state.revoked_tokens or InMemoryRevokedTokenStore()
        return

    app.mongodb_client = get_db_client(config.MONGO_URL)
    app.mongodb = app.mongodb_client[config.MONGO_DB]
    if app.state.store is None:
        app.state.store = MongoTransactionStore(app.mongodb)
        await app.state.store.create_indexes()
    if app.state.users is None:
        app.state.users = MongoUserDirectory(app.mongodb)
        await app.state.users.create_indexes()
    if app.state.revoked_tokens is None:
        app.state.revoked_tokens = MongoRevokedTokenStore(app.mongodb)
        await app.state.revoked_tokens.create_indexes()


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: Settings = app.state.settings
    app.mongodb_client = None
    if app.state.payment_service is None:
        await _build_storage(app, config)
        app.state.gateway = app.state.gateway or build_gateway(config)
        app.state.payment_service = PaymentService(app.state.store, app.state.users, app.state.gateway)
    logger.info(
        "Service started",
        extra={"gateway": app.state.gateway.name},
    )

    yield

    await app.state.gateway.aclose()
    if app.mongodb_client is not None:
        app.mongodb_client.close()


def create_app(
    config: Optional[Settings] = None,
    *,
    store: Optional[TransactionStore] = None,
    users: Optional[UserDirectory] = None,
    revoked_tokens: Optional[RevokedTokenStore] = None,
    gateway: Optional[PaymentGateway] = None,
) -> FastAPI:
    """
    Build the application.

    Components passed in are used as-is; the rest are built at startup from
    `config` (STORAGE_BACKEND and PAYMENT_GATEWAY).
    """
    config = config or settings
    app = FastAPI(title="Paygate Payment Service", version=VERSION, lifespan=lifespan)

    app.state.settings = config
    app.state.store = store
    app.state.users = users
    app.state.revoked_tokens = revoked_tokens
    app.state.gateway = gateway
    app.state.payment_service = None
    if all(c is not None for c in (store, users, revoked_tokens, gateway)):
        app.state.payment_service = PaymentService(store, users, gateway)

    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    # Security Setup
    app.add_middleware(SecurityHeadersMiddleware)

    # Middleware
    app.add_middleware(RequestLoggingMiddleware, service_name=config.SERVICE_NAME)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")

    @app.get("/")
    async def entry():
        return {
            "status": "success",
            "message": "Payment API Gateway with Midtrans",
            "environment": config.MIDTRANS_ENVIRONMENT,
            "client_key": config.MIDTRANS_CLIENT_KEY,
        }

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        db_status = "connected" if await app.state.store.ping() else "disconnected"
        if db_status != "connected":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=ErrorResponse(error="Service Unhealthy", details={"database": db_status}).model_dump(),
            )

        return HealthResponse(
            service=config.SERVICE_NAME,
            status="healthy",
            timestamp=datetime.utcnow(),
            version=VERSION,
            database=db_status,
            dependencies={"payment-gateway": app.state.gateway.name},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("paygate.main:app", host="0.0.0.0", port=8080, log_level=settings.LOG_LEVEL.lower())
