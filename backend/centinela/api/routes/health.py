"""Endpoint de salud para validaciones rápidas."""

from typing import Any

from fastapi import APIRouter, Depends

from centinela.api.deps import get_container
from centinela.container import Container

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck(container: Container = Depends(get_container)) -> dict[str, Any]:
    """Indica que la API está viva junto con el diagnóstico de callbacks."""
    status, issues = container.stats.health()
    return {
        "status": "ok",
        "callbacks": {"status": status, "issues": issues},
        "sweep_running": container.scheduler.is_running,
        "store_backend": container.settings.store_backend,
    }
