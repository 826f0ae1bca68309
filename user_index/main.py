import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .db.session import dispose_engine
from .errors import ConfigurationError
from .logging_config import configure_logging
from .routes import get_orchestrator, reset_orchestrator, router
from .sync import SyncOrchestrator
from .telemetry import event_counts


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    settings.validate_startup()
    logger.info("User index sync starting against %s (index %s)", settings.elasticsearch_host, settings.elasticsearch_index)
    logger.info("LMS service configured: %s", bool(settings.lms_service_url))
    logger.info("Assessment service configured: %s", bool(settings.assessment_service_url))
    if settings.elasticsearch_enabled and settings.ensure_index_on_startup:
        created = await get_orchestrator().index.ensure_index()
        if created:
            logger.info("Created missing index %s", settings.elasticsearch_index)
    try:
        yield
    finally:
        orchestrator = reset_orchestrator()
        if orchestrator is not None:
            await orchestrator.index.close()
        dispose_engine()


app = FastAPI(title="User Index Sync", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {"status": "ok", "index": settings.elasticsearch_index, "events": event_counts()}


@app.get("/healthz/index")
async def index_health(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> Dict[str, str]:
    try:
        reachable = await orchestrator.index.ping()
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not reachable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="index unreachable")
    return {"status": "ok", "index": orchestrator.index.index_name}
