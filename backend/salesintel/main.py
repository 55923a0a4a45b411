from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import Settings, get_settings
from .core.logging import configure_logging
from .api.routes_intelligence import router as intelligence_router

settings = get_settings()
configure_logging(settings.LOG_LEVEL)


def _split_origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


def cors_origins(settings: Settings) -> List[str]:
    """
    Allowed browser origins for the intelligence API.

    Prod refuses to start without FRONTEND_ORIGIN and never allows "*".
    Elsewhere CORS_ALLOW_ALL_ORIGINS wins, then FRONTEND_ORIGIN, then "*".
    """
    if settings.ENV.lower() == "prod":
        if not settings.FRONTEND_ORIGIN:
            raise RuntimeError(
                "FRONTEND_ORIGIN must be set in production - refusing to start with wide-open CORS."
            )
        return _split_origins(settings.FRONTEND_ORIGIN)

    if settings.CORS_ALLOW_ALL_ORIGINS or not settings.FRONTEND_ORIGIN:
        return ["*"]
    return _split_origins(settings.FRONTEND_ORIGIN)


app = FastAPI(title="Sales Intelligence Orchestrator API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(settings),
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(intelligence_router, prefix=settings.API_PREFIX)


@app.on_event("startup")
def create_tables() -> None:
    # No migrations: the history table is created on first start
    from .core.db import Base, engine
    from .models import collection_run  # noqa: F401

    Base.metadata.create_all(bind=engine)
