from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog
from sqlalchemy import text

from .api import get_engine_config, get_group_provider, router
from .config import settings
from .core.logging_config import setup_logging
from .core.observability import request_tracing_middleware
from .db import Base, SessionLocal, engine
from . import models  # noqa: F401  registers tables on Base.metadata

logger = structlog.get_logger(__name__)


def _read_app_version() -> str:
    version_file = Path(__file__).resolve().parents[1] / "VERSION"
    try:
        value = version_file.read_text(encoding="utf-8").strip()
    except OSError:
        return "0.1.0"
    return value or "0.1.0"


setup_logging(settings.LOG_LEVEL)
# Bad zones or a malformed overrides table stop the process here.
get_engine_config()
get_group_provider()

if settings.DATABASE_URL.startswith("sqlite"):
    Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Facility Hours",
    description="Opening hours, slot availability and checkout limits for an equipment facility",
    version=_read_app_version(),
)


@app.middleware("http")
async def tracing_middleware(request: Request, call_next):
    return await request_tracing_middleware(request, call_next)


@app.get("/ping")
def ping():
    return {"ok": True}


@app.get("/health")
def health():
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        return JSONResponse(status_code=503, content={"status": "not_ready", "checks": {"db": "error"}})
    return {"status": "ok", "checks": {"db": "ok"}}


app.include_router(router)
