"""Dependencias compartidas por las rutas."""

from fastapi import Request

from centinela.container import Container


def get_container(request: Request) -> Container:
    """Colaboradores construidos al arrancar la aplicación."""
    return request.app.state.container
