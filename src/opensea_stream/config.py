"""Runtime settings for the OpenSea stream client."""
from __future__ import annotations

from functools import lru_cache
import json
from typing import Annotated, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .protocol import ALL_COLLECTIONS


class Settings(BaseSettings):
    """Strongly typed client configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OPENSEA_STREAM_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("opensea_stream_api_key", "opensea_api_key"),
        description="OpenSea API key passed as the socket token.",
    )
    network: str = Field(default="mainnet", description="Stream endpoint to use: mainnet or testnet.")

    open_timeout_sec: float = Field(default=10.0, description="Timeout for the TLS/WebSocket handshake.")
    auth_timeout_sec: float = Field(default=10.0, description="Time allowed for the first heartbeat reply.")
    ping_interval_sec: Optional[float] = Field(default=20.0, description="WebSocket ping interval; None disables pings.")
    ping_timeout_sec: Optional[float] = Field(default=20.0, description="Pong deadline before the socket is dropped.")
    heartbeat_interval_sec: float = Field(default=30.0, description="Phoenix heartbeat interval.")
    max_frame_bytes: Optional[int] = Field(default=2**22, description="Largest inbound frame accepted by the socket.")

    backoff_initial_sec: float = Field(default=1.0, description="First reconnect delay.")
    backoff_max_sec: float = Field(default=60.0, description="Upper bound for the reconnect delay.")
    backoff_multiplier: float = Field(default=2.0, description="Growth factor applied per failed attempt.")
    stability_threshold_sec: float = Field(
        default=60.0,
        description="Connected time after which the backoff counter resets.",
    )
    max_reconnect_attempts: Optional[int] = Field(
        default=None,
        description="Consecutive reconnect attempts before giving up; None retries until shutdown.",
    )

    metrics_enabled: bool = Field(default=True, description="Record Prometheus metrics.")
    log_level: str = Field(default="INFO", description="Root log level used by the monitor program.")
    topics: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [ALL_COLLECTIONS], description="Topics subscribed by the monitor program.")

    @field_validator("network")
    @classmethod
    def _validate_network(cls, value: str) -> str:
        normalised = value.strip().lower()
        if normalised not in ("mainnet", "testnet"):
            raise ValueError("network must be 'mainnet' or 'testnet'")
        return normalised

    @field_validator("topics", mode="before")
    @classmethod
    def _coerce_topics(cls, value):
        if value in (None, "", [], ()):
            return [ALL_COLLECTIONS]
        if isinstance(value, str):
            raw = value.strip()
            try:
                parsed = json.loads(raw)
                value = parsed if isinstance(parsed, list) else [raw]
            except json.JSONDecodeError:
                value = [part.strip() for part in raw.split(",") if part.strip()]
        if isinstance(value, (set, tuple)):
            value = list(value)
        if not isinstance(value, list):
            raise ValueError("topics must be a list of strings")
        normalised = [str(item).strip() for item in value if str(item).strip()]
        return normalised or [ALL_COLLECTIONS]

    @field_validator("backoff_multiplier")
    @classmethod
    def _validate_multiplier(cls, value: float) -> float:
        if value < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid repeated environment parsing."""

    return Settings()
