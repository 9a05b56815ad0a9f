import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .coding_routes import router as coding_router
from .config import Settings, get_settings
from .db.session import create_schema, dispose_engine, get_engine
from .logging_config import configure_logging
from .service import metrics_service_scope, select_metrics_store
from .telemetry import FetchOutcomeCounter, register_listener, unregister_listener


configure_logging()
logger = logging.getLogger(__name__)
fetch_outcomes = FetchOutcomeCounter()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.database_url:
        create_schema()
    store = select_metrics_store(settings)
    register_listener(fetch_outcomes)
    try:
        async with metrics_service_scope(store, settings) as service:
            app.state.metrics_store = store
            app.state.metrics_service = service
            yield
    finally:
        unregister_listener(fetch_outcomes)
        dispose_engine()


app = FastAPI(title="Coding Metrics Backend", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(coding_router)

settings_snapshot = get_settings()
logger.info("GitHub token configured: %s", bool(settings_snapshot.github_token))
logger.info("Database configured: %s", bool(settings_snapshot.database_url))


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, object]:
    return {
        "status": "ok",
        "github_configured": bool(settings.github_token),
        "fetches": fetch_outcomes.snapshot(),
    }


@app.get("/healthz/database")
def database_health() -> Dict[str, str]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"status": "ok", "pool": engine.pool.status()}
