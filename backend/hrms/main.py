"""HRMS Backend Application.

This is the main entry point for the HRMS backend service, the HTTP API
behind the HR management single-page application.

Modules:
    - uploads: Validation and on-disk storage of uploaded files
    - documents: Employee document endpoints and DuckDB registry
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hrms.config import AppConfig, get_config
from hrms.documents.router import router as documents_router
from hrms.documents.service import EmployeeDocumentService
from hrms.uploads import UploadCategory, UploadIngestor, set_ingestor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# multipart logs every parsed part at DEBUG
for _noisy in ("multipart", "python_multipart"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppConfig = app.state.config

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    ingestor = UploadIngestor.from_config(config.uploads)
    # Fail at startup rather than on the first upload if the root is unusable
    ingestor.resolver.resolve(UploadCategory.DOCUMENTS)
    set_ingestor(ingestor)
    EmployeeDocumentService.get_instance(config.documents.db_path)
    logger.info(
        "Upload ingestion ready: root=%s max_file_size=%d",
        config.uploads.root_dir,
        config.uploads.max_file_size_bytes,
    )

    yield  # Application runs here

    # Shutdown
    EmployeeDocumentService.reset_instance()
    logger.info("Application shutdown complete")


async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings to run with. Defaults to ``get_config()`` at call
            time, so ``reset_config`` takes effect for the next app built.
    """
    config = config or get_config()

    app = FastAPI(
        title="HRMS API",
        description="Backend service for the HR management system",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(documents_router)
    app.add_api_route("/health", health, methods=["GET"])
    return app


app = create_app()
