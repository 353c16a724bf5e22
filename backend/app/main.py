import logging.config
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import Settings, get_settings
from starlight.realtime import LivenessMonitor, SessionManager


def build_logging_config(level: str = "INFO") -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }
        },
        "root": {
            "handlers": ["default"],
            "level": level.upper(),
        },
        "loggers": {
            "starlight.realtime.liveness": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False,
            }
        },
    }


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the signaling application with its own session manager."""

    settings = settings or get_settings()
    session_manager = SessionManager()
    liveness = LivenessMonitor(session_manager, settings.heartbeat_interval_seconds)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        liveness.start()
        try:
            yield
        finally:
            await liveness.stop()

    application = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    application.state.settings = settings
    application.state.session_manager = session_manager
    application.state.liveness = liveness

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.cors_origins],
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(api_router, prefix="/api")
    application.include_router(ws_router)
    application.include_router(metrics_router)
    return application


settings = get_settings()

logging.config.dictConfig(build_logging_config(settings.log_level))

app = create_app(settings)


def run() -> None:
    """Console entry point: serve :data:`app` with uvicorn."""

    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
