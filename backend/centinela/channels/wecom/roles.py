"""Clasificación de remitentes en personal o cliente."""

from __future__ import annotations

from collections.abc import Iterable

from centinela.models.conversation import SenderRole


class RoleClassifier:
    """Heurística por fragmentos del ID.

    Los contactos externos de WeCom tienen IDs con prefijos como ``wm`` o
    ``wxid``; cualquier otro ID se considera del personal.
    """

    def __init__(self, external_markers: Iterable[str]) -> None:
        self._markers = tuple(marker for marker in external_markers if marker)

    def classify(self, user_id: str) -> SenderRole:
        if any(marker in user_id for marker in self._markers):
            return "external"
        return "staff"
