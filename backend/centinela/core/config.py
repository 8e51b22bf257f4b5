"""Configuración central basada en variables de entorno."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_csv(value: Any) -> Any:
    """Acepta listas JSON o valores separados por coma desde el entorno."""
    if not isinstance(value, str):
        return value
    candidate = value.strip()
    if not candidate:
        return []
    if candidate.startswith("["):
        return json.loads(candidate)
    return [chunk.strip() for chunk in candidate.split(",") if chunk.strip()]


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    request_log_level: str = Field(
        default="info",
        description=(
            "Nivel mínimo para registrar solicitudes en middleware. "
            "Valores más altos (warning/error) reducen registros de peticiones exitosas."
        ),
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/health", "/api/health", "/favicon", "/docs", "/openapi"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Archivo principal de logs; sin valor sólo se escribe a stdout.",
    )

    # Plataforma de mensajería (WeCom)
    wecom_corp_id: str = Field(default="", description="Identificador del tenant embebido en cada payload.")
    wecom_corp_secret: str | None = None
    wecom_agent_id: str | None = None
    wecom_token: str = Field(default="", description="Token compartido para firmar callbacks.")
    wecom_encoding_aes_key: str | None = Field(
        default=None,
        description="Clave simétrica de 43 caracteres en base64 sin relleno.",
    )
    wecom_api_base_url: str = "https://qyapi.weixin.qq.com"
    wecom_padding_block_size: Literal[16, 32] = Field(
        default=16,
        description="Cota superior del byte de relleno PKCS#7; 32 relaja la validación y se advierte al arrancar.",
    )

    # Escalamiento
    alert_thresholds: Annotated[list[int], NoDecode] = Field(
        default_factory=lambda: [10, 30, 60, 120, 180],
        description="Minutos sin respuesta que disparan cada nivel, en orden ascendente.",
    )
    alert_additional_receivers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Usuarios que reciben todas las alertas además del dueño del grupo.",
    )
    alert_content_preview_chars: int = Field(default=50, ge=1)
    staff_id_exclusion_markers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["wm", "wxid"],
        description="Fragmentos de ID que identifican a un remitente externo (cliente).",
    )

    # Persistencia
    store_backend: Literal["api", "memory"] = "api"
    groups_api_base_url: str = "http://localhost:8080"
    groups_api_timeout_seconds: float = Field(default=10.0, gt=0)

    # Resiliencia HTTP
    http_max_retries: int = Field(default=3, ge=1, le=10)
    http_retry_backoff_seconds: float = Field(default=0.5, ge=0)

    # Barrido periódico
    sweep_enabled: bool = True
    sweep_interval_seconds: int = Field(default=60, ge=5)
    sweep_concurrency: int = Field(default=8, ge=1)
    sweep_item_timeout_seconds: float = Field(default=30.0, gt=0)

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CENTINELA_", extra="ignore")

    @field_validator(
        "alert_thresholds",
        "alert_additional_receivers",
        "staff_id_exclusion_markers",
        mode="before",
    )
    @classmethod
    def _parse_lists(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("alert_thresholds")
    @classmethod
    def _validate_thresholds(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("alert_thresholds no puede estar vacío")
        if any(item <= 0 for item in value):
            raise ValueError("alert_thresholds sólo admite minutos positivos")
        if any(later <= earlier for earlier, later in zip(value, value[1:])):
            raise ValueError("alert_thresholds debe ser estrictamente ascendente")
        return value

    @field_validator("wecom_encoding_aes_key")
    @classmethod
    def _validate_aes_key(cls, value: str | None) -> str | None:
        if value is None:
            return None
        candidate = value.strip()
        if not candidate:
            return None
        if len(candidate) != 43:
            raise ValueError("wecom_encoding_aes_key debe tener 43 caracteres")
        return candidate


settings = Settings()
