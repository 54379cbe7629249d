"""Configuration helpers for the invoicesync service and worker."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic_settings import BaseSettings
from pydantic import field_validator


BASE_DIR = Path(__file__).resolve().parent

DEFAULT_LND_DIR = Path.home() / ".lnd"
DEFAULT_TLS_CERT_FILENAME = "tls.cert"
DEFAULT_MACAROON_FILENAME = "admin.macaroon"


def expand_path(value: Any) -> Path:
    """Expand a leading ``~`` and environment variables in ``value``."""

    return Path(os.path.expandvars(str(value))).expanduser()


class Settings(BaseSettings):
    """Application settings sourced from environment variables."""

    lnd_grpc_host: str = "localhost:10009"
    lnd_dir: Path = DEFAULT_LND_DIR
    lnd_tls_cert: Path | None = None
    lnd_macaroon: Path | None = None

    firebase_credentials: Path = Path.home() / "firebase.json"
    collection: str = "messages"
    payment_request_field: str = "invoice"
    settled_field: str = "settled"

    call_timeout_seconds: float = 5.0
    rescan_interval_seconds: float = 0.0
    stream_restart_enabled: bool = True
    max_stream_restarts: int = 5
    retry_base_seconds: int = 5
    retry_max_seconds: int = 300

    http_host: str = "0.0.0.0"
    http_port: int = 8080
    log_level: str = "INFO"

    class Config:
        env_prefix = "INVOICESYNC_"
        env_file = BASE_DIR.parent / ".env"
        env_file_encoding = "utf-8"

    @field_validator("lnd_dir", "lnd_tls_cert", "lnd_macaroon", "firebase_credentials", mode="before")
    def _ensure_path(cls, value: Any) -> Path | None:  # type: ignore[override]
        if value is None or value == "":
            return None
        return expand_path(value)

    @field_validator("call_timeout_seconds")
    def _validate_timeout(cls, value: float) -> float:  # type: ignore[override]
        if value <= 0:
            raise ValueError("call_timeout_seconds must be positive")
        return value

    @field_validator("rescan_interval_seconds")
    def _validate_rescan_interval(cls, value: float) -> float:  # type: ignore[override]
        if value < 0:
            raise ValueError("rescan_interval_seconds must not be negative")
        return value

    @field_validator("log_level")
    def _validate_log_level(cls, value: str) -> str:  # type: ignore[override]
        return value.upper()

    @property
    def tls_cert_path(self) -> Path:
        # An unset cert lives inside lnd_dir, custom or not.
        if self.lnd_tls_cert is None:
            return self.lnd_dir / DEFAULT_TLS_CERT_FILENAME
        return self.lnd_tls_cert

    @property
    def macaroon_path(self) -> Path:
        if self.lnd_macaroon is None:
            return self.lnd_dir / DEFAULT_MACAROON_FILENAME
        return self.lnd_macaroon


settings = Settings()


def configure_logging() -> None:
    """Configure global logging based on the current settings."""

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))


__all__ = ["Settings", "settings", "configure_logging", "expand_path"]
