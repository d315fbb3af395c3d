"""
FastAPI application for the election admin service.

Serves the session-backed admin pages from ``routes`` plus the public ballot
API, health check and Prometheus metrics.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.sessions import SessionMiddleware

from .accounts import AccountService
from .config import settings
from .database import create_database
from .errors import AuthenticationError, ElectionAdminError, ValidationError
from .lifecycle import ElectionManager
from .metrics import request_duration
from .routes import router
from .schemas import BallotRequest, BallotResponse, ErrorResponse, HealthResponse
from .security import limiter

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    try:
        await app.state.database.initialize()
        logger.info(f"{settings.SERVICE_NAME} started successfully")
    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")
    try:
        await app.state.database.close()
        logger.info(f"{settings.SERVICE_NAME} shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


async def authentication_error_handler(request: Request, exc: AuthenticationError):
    """Send browsers to the login page; API callers get a 401."""
    if request.method in ("GET", "POST"):
        return RedirectResponse("/login", status_code=status.HTTP_302_FOUND)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=type(exc).__name__, message=exc.message).model_dump()
    )


async def election_admin_error_handler(request: Request, exc: ElectionAdminError):
    """Map domain errors to their HTTP status with an ErrorResponse body."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            message=exc.message,
            details=exc.details
        ).model_dump(mode="json")
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies and parameters as ValidationError."""
    fields = [
        ".".join(str(part) for part in (err["loc"][1:] or err["loc"]))
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=ErrorResponse(
            error="ValidationError",
            message="Invalid request data",
            details={"fields": fields}
        ).model_dump()
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="InternalError", message="Internal server error").model_dump()
    )


def create_app(database=None) -> FastAPI:
    """Build the application around a storage backend (default: from settings)."""
    app = FastAPI(
        title="Election Admin",
        description="Create elections, manage their questions and options, and collect ballots",
        version=settings.API_VERSION,
        lifespan=lifespan
    )

    app.state.database = database if database is not None else create_database()
    app.state.manager = ElectionManager(app.state.database)
    app.state.accounts = AccountService(app.state.database)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY,
        session_cookie=settings.SESSION_COOKIE,
        max_age=settings.SESSION_MAX_AGE,
        same_site="lax",
    )

    # Add rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(ElectionAdminError, election_admin_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """Middleware to track request duration."""
        start = time.perf_counter()
        response = await call_next(request)
        request_duration.labels(
            method=request.method,
            status=response.status_code
        ).observe(time.perf_counter() - start)
        return response

    app.include_router(router)

    @app.post(
        f"/api/{settings.API_VERSION}/elections/{{election_id}}/ballots",
        response_model=BallotResponse,
        status_code=status.HTTP_202_ACCEPTED,
        responses={
            404: {"model": ErrorResponse, "description": "Election not found"},
            409: {"model": ErrorResponse, "description": "Election closed or duplicate ballot"},
            422: {"model": ErrorResponse, "description": "Ballot does not match the election"},
            429: {"description": "Rate limit exceeded"}
        }
    )
    @limiter.limit(settings.BALLOT_RATE_LIMIT)
    async def submit_ballot(request: Request, election_id: int, ballot: BallotRequest) -> BallotResponse:
        """
        Cast a ballot in a launched election.

        - **voter_key**: Voter credential, one ballot per key and election
        - **selections**: Option id chosen for every question id
        """
        await request.app.state.manager.cast_ballot(election_id, ballot.voter_key, ballot.selections)
        logger.info(f"Ballot recorded: election={election_id}")
        return BallotResponse(
            election_id=election_id,
            status="accepted",
            message="Ballot recorded successfully"
        )

    @app.get(
        f"/api/{settings.API_VERSION}/health",
        response_model=HealthResponse,
        responses={
            503: {"model": HealthResponse, "description": "Service unhealthy"}
        }
    )
    async def health_check(request: Request):
        """Check health of the service and its storage backend."""
        storage_healthy = await request.app.state.database.check_health()
        services = {"storage": "connected" if storage_healthy else "disconnected"}

        response = HealthResponse(
            status="healthy" if storage_healthy else "unhealthy",
            services=services,
            timestamp=datetime.utcnow()
        )
        return JSONResponse(
            status_code=status.HTTP_200_OK if storage_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json")
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "election_admin.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
