"""Dependencias reutilizables para rutas de WeCom."""

from fastapi import Depends

from centinela.api.deps import get_container
from centinela.container import Container

from .service import CallbackIngress


def get_ingress(container: Container = Depends(get_container)) -> CallbackIngress:
    return container.ingress
