from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from review_aggregator.api.v1.imports import router as imports_router
from review_aggregator.api.v1.listings import router as listings_router
from review_aggregator.api.v1.reviews import router as reviews_router
from review_aggregator.core.config import Settings, get_settings
from review_aggregator.dependencies import ServiceContainer, build_container


def create_app(
    settings: Settings | None = None, container: ServiceContainer | None = None
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.container = container or build_container(settings)
        try:
            yield
        finally:
            await app.state.container.aclose()

    app = FastAPI(title=settings.app_name, docs_url="/docs", redoc_url="/redoc", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["*"],
    )

    app.include_router(imports_router, prefix=settings.api_v1_prefix)
    app.include_router(reviews_router, prefix=settings.api_v1_prefix)
    app.include_router(listings_router, prefix=settings.api_v1_prefix)

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
