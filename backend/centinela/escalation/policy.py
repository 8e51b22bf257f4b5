"""Política de escalamiento por minutos sin respuesta."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Sequence


def next_level(elapsed_minutes: float | None, thresholds: Sequence[int]) -> int:
    """Nivel de alerta para los minutos transcurridos.

    ``1 + i`` para el mayor ``i`` con ``elapsed >= thresholds[i]``; ``0`` si no
    se alcanzó el primer umbral o no hay mensaje del cliente sin responder
    (``elapsed_minutes is None``). ``thresholds`` debe venir ordenado.

    >>> next_level(45, [10, 30, 60, 120, 180])
    2
    """
    if elapsed_minutes is None or elapsed_minutes < 0:
        return 0
    return bisect_right(thresholds, elapsed_minutes)
