from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import get_settings
from .api.routers import health as health_router
from .api.routers import gatherings as gatherings_router
from .api.routers import reservations as reservations_router
from .api.routers import events as events_router
from .observability.logging import setup_logging
from .middleware.request_context import RequestContextMiddleware
from .observability.metrics import MetricsHTTPMiddleware, metrics_endpoint
from .services.coordinator import get_coordinator
import uvicorn

settings = get_settings()
setup_logging()
ALLOWED_ORIGINS = [
    settings.FRONTEND_ORIGIN,
    "http://127.0.0.1:5173",
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    # let in-flight promotion notifications finish before the loop goes away
    await get_coordinator().wait_notifications()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(MetricsHTTPMiddleware)

    app.include_router(health_router.router)
    app.include_router(gatherings_router.router)
    app.include_router(reservations_router.router)
    app.include_router(events_router.router)
    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("gatherings.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=True)
