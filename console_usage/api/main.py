from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional

from console_usage.api.routes import InvalidApiKey, router as api_router
from console_usage.config import ReceiverSettings, StorageSettings, settings
from console_usage.storage.versioned import VersionedStorage
from console_usage.utils.observability import Logger

logger = Logger(__name__)


def _describe_error(err: dict) -> str:
    location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    return f"{location}: {err.get('msg')}" if location else str(err.get("msg"))


def create_app(
    storage: Optional[VersionedStorage] = None,
    receiver_settings: Optional[ReceiverSettings] = None,
    storage_settings: Optional[StorageSettings] = None,
    enable_metrics: Optional[bool] = None,
) -> FastAPI:
    app = FastAPI(
        title="Console Usage Receiver",
        description="Receives and stores Console usage snapshots pushed by the scraper.",
        version="1.0.0"
    )

    if storage is None:
        storage = VersionedStorage(storage_settings or settings.storage)
        storage.initialize()

    app.state.storage = storage
    app.state.receiver_settings = receiver_settings or settings.receiver
    app.state.metrics_enabled = settings.observability.enable_metrics if enable_metrics is None else enable_metrics

    if not app.state.receiver_settings.api_key:
        logger.log_warning("receiver_api_key_not_set", effect="all sync posts will be rejected")

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidApiKey)
    async def invalid_api_key_handler(request: Request, exc: InvalidApiKey):
        return JSONResponse(status_code=401, content={"error": "Invalid API key"})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        problems = "; ".join(_describe_error(err) for err in errors)
        # Only body errors are about the posted snapshot; the rest are query or header problems
        in_body = all(tuple(err.get("loc", ()))[:1] == ("body",) for err in errors)
        prefix = "Invalid usage data" if in_body else "Invalid request"
        return JSONResponse(status_code=400, content={"message": f"{prefix}: {problems}"})

    # Routes
    app.include_router(api_router)

    logger.log_event("api_startup_complete", history_dir=str(storage.history_dir))

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host=settings.receiver.host, port=settings.receiver.port)
