"""
FastAPI server for contribux search.

Provides the opportunity search endpoint and a health check.
"""
import time
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from .env file
dotenv_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=dotenv_path)

from api.models import HealthResponse
from api.routes import search as search_routes
from contribux.errors import ContribuxError, InternalError, InvalidParameter, Unauthorized
from contribux.logging_config import get_logger, setup_logging
from contribux.search.service import OpportunitySearchService, create_search_stack

VERSION = "0.1.0"

logger = get_logger(__name__)


def status_for(error: ContribuxError) -> int:
    """HTTP status of a search error."""
    if isinstance(error, Unauthorized):
        return 401
    if isinstance(error, InvalidParameter) or error.error_code == "InvalidParameter":
        return 400
    if error.retryable:
        return 503
    return 500


def create_app(service: OpportunitySearchService | None = None) -> FastAPI:
    """Build the application.

    Args:
        service: Pre-built search service; when omitted one is created from
            ``CONTRIBUX_*`` settings at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        setup_logging()
        app.state.started_at = time.time()
        if service is not None:
            app.state.search_service = service
            yield
            return

        logger.info("Search server starting")
        stack = await create_search_stack()
        app.state.search_service = stack.service
        logger.info(
            "Indices loaded: %d lexical, %d vector documents; %d lexical, %d vector repositories",
            stack.lexical.count(), stack.vector.count(),
            stack.repository_lexical.count(), stack.repository_vector.count(),
        )
        try:
            yield
        finally:
            logger.info("Search server shutting down")
            await stack.close()

    app = FastAPI(
        title="Contribux Search API",
        description="Hybrid search and personalized ranking of contribution opportunities",
        version=VERSION,
        lifespan=lifespan,
    )

    # Configure CORS - allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,  # Must be False when allow_origins is ["*"]
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(search_routes.router)

    @app.get("/", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=VERSION,
            uptime=time.time() - request.app.state.started_at,
        )

    @app.exception_handler(ContribuxError)
    async def contribux_exception_handler(request: Request, exc: ContribuxError):
        status = status_for(exc)
        if status >= 500:
            logger.error("Search failed (%s): %s", exc.error_code, exc.message)
        headers = {"Retry-After": "1"} if status == 503 else None
        return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        error = InvalidParameter(
            "Invalid request",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        )
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error("Unhandled error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content=InternalError("Internal server error").to_dict())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.server:app",
        host="0.0.0.0",
        port=8080,
        log_level="info",
    )
