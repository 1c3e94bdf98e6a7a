"""Routes that expose operational observability data."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .. import __version__
from ..config import Settings, get_settings
from ..database import get_engine
from ..observability import metrics_registry

router = APIRouter(prefix="/api", tags=["observability"])


def _database_ok() -> bool:
    """Run a lightweight database check."""

    engine = get_engine()
    try:
        with Session(engine) as session:
            session.exec(select(1)).one()
    except SQLAlchemyError:
        return False
    return True


@router.get("/metrics")
def read_metrics() -> dict[str, object]:
    """Return request timings and upload pipeline counters."""

    return metrics_registry.snapshot()


@router.get("/status")
def read_status(settings: Settings = Depends(get_settings)) -> dict[str, object]:
    """Return an aggregated operational status payload."""

    return {
        "app": {"version": __version__},
        "database": {"ok": _database_ok()},
        "integrations": {
            "storage": settings.storage_configured,
            "registrar": settings.registrar_configured,
            "email": settings.email_configured,
        },
        "upload_response_mode": settings.upload_response_mode,
        "registrar_mode": settings.registrar_mode,
        "metrics": metrics_registry.snapshot(),
    }


__all__ = ["router"]
