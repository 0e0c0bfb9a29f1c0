"""Environment-driven settings for the contact gateway."""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


# Rate limiting: 5 submissions per IP per 15 minutes
RATE_LIMIT_WINDOW_SECONDS = 15 * 60
RATE_LIMIT_MAX_REQUESTS = 5

MAX_BODY_BYTES = 10 * 1024

DELIVERY_MODE_SYNC = "sync"
DELIVERY_MODE_BACKGROUND = "background"


def load_environment() -> None:
    """Load a local .env file if present. Real environment variables take precedence."""
    load_dotenv()


def _parse_origins(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.warning(f"{name}={raw!r} is not a number, using {default}")
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


@dataclass
class ContactSettings:
    """
    Deployment configuration for the contact gateway.

    Built once at process start (or once per warm serverless worker) and
    passed into the pipeline; nothing reads the environment per request.
    """
    webhook_url: Optional[str] = None
    api_key: Optional[str] = None
    allowed_origins: List[str] = field(default_factory=list)
    environment: str = "development"
    webhook_timeout: float = 10.0
    retry_timeout: float = 30.0
    delivery_mode: str = DELIVERY_MODE_SYNC
    host: str = "0.0.0.0"
    port: int = 3001

    def __post_init__(self):
        if self.webhook_url is not None:
            self.webhook_url = self.webhook_url.strip() or None
        if self.delivery_mode not in (DELIVERY_MODE_SYNC, DELIVERY_MODE_BACKGROUND):
            raise ValueError(
                f"delivery_mode must be '{DELIVERY_MODE_SYNC}' or '{DELIVERY_MODE_BACKGROUND}', "
                f"got {self.delivery_mode!r}"
            )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_restricted(self) -> bool:
        """CORS is only enforced in production and only when origins are configured."""
        return self.is_production and bool(self.allowed_origins)

    @classmethod
    def from_env(cls) -> "ContactSettings":
        return cls(
            webhook_url=os.environ.get("WEBHOOK_URL") or os.environ.get("N8N_WEBHOOK_URL"),
            api_key=os.environ.get("API_KEY") or None,
            allowed_origins=_parse_origins(os.environ.get("ALLOWED_ORIGINS")),
            environment=os.environ.get("ENVIRONMENT", "development"),
            webhook_timeout=_float_env("WEBHOOK_TIMEOUT_SECONDS", 10.0),
            retry_timeout=_float_env("WEBHOOK_RETRY_TIMEOUT_SECONDS", 30.0),
            delivery_mode=os.environ.get("WEBHOOK_DELIVERY_MODE", DELIVERY_MODE_SYNC).strip().lower(),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_int_env("PORT", 3001),
        )
