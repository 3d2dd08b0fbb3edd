import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from paysys.config.mongodb import mongodb
from paysys.config.setting import Settings, settings
from paysys.domains.auth.jwt_service import JWTService
from paysys.domains.auth.routes import router as auth_router
from paysys.domains.cards.repository import CardRepository
from paysys.domains.cards.routes import router as card_router
from paysys.domains.cards.services import CardService
from paysys.domains.transactions.repository import TransactionRepository
from paysys.domains.transactions.routes import router as payment_router
from paysys.domains.transactions.services import TransactionService
from paysys.domains.users.repository import UserRepository
from paysys.domains.users.routes import router as user_router
from paysys.domains.users.service import UserService
from paysys.shared.card_validation_service import CardValidationService
from paysys.shared.encryption_service import EncryptionService, load_encryption_key
from paysys.shared.errors import AppError, ConfigurationError
from paysys.shared.payment_gateway import PaymentGatewaySimulator
from paysys.shared.request_logger import RequestLoggerMiddleware

load_dotenv()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s"
)

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    error = {"message": message, "code": code}
    error.update(extra)
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def check_configuration(app_settings: Settings) -> bytes:
    """Abort on a bad encryption key, warn about optional settings."""
    try:
        key = load_encryption_key(app_settings.encryption_key)
    except ConfigurationError as exc:
        logger.critical(f"{exc.message}. Refusing to start.")
        raise SystemExit(1) from exc
    logger.info("ENCRYPTION_KEY loaded and valid (length 32)")

    if not app_settings.mongo_uri:
        logger.warning("MONGO_URI not set. Set this before deploying to production.")
    if not app_settings.external_card_validation_url:
        logger.warning("EXTERNAL_CARD_VALIDATION_URL not set. Card validation will be skipped.")
    return key


async def build_services(app: FastAPI, app_settings: Settings, key: bytes):
    try:
        await mongodb.init_db()
        await mongodb.ensure_indexes()
        count = await mongodb.db.transactions.count_documents({})
        logger.info(f"MongoDB connected. Found {count} documents in 'transactions' collection.")
    except Exception as e:
        logger.error(f"MongoDB connection failed: {str(e)}")
        raise

    db = mongodb.get_db()
    gateway = PaymentGatewaySimulator(
        approval_rate=app_settings.gateway_approval_rate,
        pix_expiration_minutes=app_settings.pix_expiration_minutes,
    )
    jwt_service = JWTService(
        secret_key=app_settings.jwt_secret,
        refresh_secret_key=app_settings.jwt_refresh_secret,
        access_expires_minutes=app_settings.jwt_expires_minutes,
        refresh_expires_days=app_settings.jwt_refresh_expires_days,
    )

    app.state.gateway = gateway
    app.state.jwt_service = jwt_service
    app.state.user_service = UserService(
        UserRepository(db["users"]),
        jwt_service,
        passwordless_register=app_settings.passwordless_register,
        auto_login_after_register=app_settings.auto_login_after_register,
    )
    app.state.transaction_service = TransactionService(
        TransactionRepository(db["transactions"]),
        gateway,
        interest_monthly=app_settings.installment_interest_monthly,
        gateway_timeout=app_settings.gateway_timeout_seconds,
    )
    app.state.card_service = CardService(
        CardRepository(db["saved_cards"]),
        EncryptionService(key),
        fraud_score_threshold=app_settings.card_fraud_score_threshold,
    )
    app.state.card_validator = CardValidationService(
        url=app_settings.external_card_validation_url,
        api_key=app_settings.external_card_validation_api_key,
        timeout_ms=app_settings.external_card_validation_timeout_ms,
        provider=app_settings.external_card_validation_provider,
    )


def register_error_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
            for error in exc.errors()
        ]
        return error_response(400, "Validation failed", "VALIDATION_ERROR", details=details)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(404, f"Route {request.url.path} not found", "ROUTE_NOT_FOUND")
        return error_response(exc.status_code, str(exc.detail), "HTTP_ERROR")

    # slowapi's middleware calls this handler synchronously
    def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return error_response(429, "Too many requests, please try again later", "RATE_LIMIT_EXCEEDED")

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(500, "Internal server error", "INTERNAL_ERROR")


def create_app(app_settings: Settings = settings, state: Optional[dict] = None) -> FastAPI:
    """
    Build the API. Passing ``state`` injects ready-made services and skips
    the MongoDB startup entirely.
    """
    app = FastAPI(title=app_settings.app_name, version=app_settings.app_version)

    if state:
        for name, value in state.items():
            setattr(app.state, name, value)

    limiter = Limiter(key_func=get_remote_address, default_limits=[app_settings.rate_limit])
    app.state.limiter = limiter

    app.add_middleware(RequestLoggerMiddleware)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.parsed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.on_event("startup")
    async def startup():
        if state:
            return
        key = check_configuration(app_settings)
        await build_services(app, app_settings, key)

    @app.on_event("shutdown")
    def shutdown_db():
        if not state:
            mongodb.close()

    @app.get("/health")
    async def health():
        return {
            "status": "OK",
            "service": app_settings.app_name,
            "version": app_settings.app_version,
            "environment": app_settings.environment,
        }

    app.include_router(auth_router, prefix="/api")
    app.include_router(payment_router, prefix="/api")
    app.include_router(card_router, prefix="/api")
    app.include_router(user_router, prefix="/api")
    return app


app = create_app()
