import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from imagebed.routers import service, uploads
from imagebed.settings import settings
from imagebed.upload.client import ImageHostClient
from imagebed.upload.previews import PreviewResourceManager
from imagebed.upload.store import UploadStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    client = ImageHostClient()
    previews = PreviewResourceManager()
    store = UploadStore(
        client,
        settings_source=client.fetch_image_settings,
        previews=previews,
        refresh=client.refresh_gallery if settings.gallery_refresh_url else None,
    )
    app.state.upload_store = store
    logger.info(
        "Upload store ready (image host %s, concurrency %d, previews in %s)",
        settings.image_api_base_url,
        store.scheduler.concurrency,
        previews.preview_dir,
    )

    yield

    # Shutdown
    await store.aclose()
    await client.aclose()


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(service.router)
    application.include_router(service.version_router, prefix="/api/v1")
    application.include_router(uploads.router, prefix="/api/v1")

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred.",
                    "details": None,
                }
            },
        )

    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run("imagebed.main:app", host=settings.service_host, port=settings.service_port)
