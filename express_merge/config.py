from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

DEFAULT_POLL_SCHEDULE_SEC: Tuple[float, ...] = (0, 2, 5, 10, 20)


# ----------------------------
# Env helpers
# ----------------------------
def _get_env(name: str, required: bool = False, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if required and (val is None or str(val).strip() == ""):
        raise RuntimeError(f"Missing required environment variable: {name}")
    return "" if val is None else str(val).strip()


def _parse_bool(s: str) -> bool:
    return str(s).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_schedule(s: str) -> Tuple[float, ...]:
    parts = [p.strip() for p in str(s or "").split(",") if p.strip()]
    if not parts:
        return DEFAULT_POLL_SCHEDULE_SEC
    try:
        return tuple(float(p) for p in parts)
    except ValueError:
        raise RuntimeError(f"POLL_SCHEDULE_SEC must be a comma separated list of seconds, got {s!r}")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(asctime)s %(levelname)s %(message)s")


@dataclass
class Settings:
    shop: str
    api_secret: str
    api_key: str = ""
    admin_token: str = ""
    api_version: str = "2025-01"
    dry_run: bool = False
    accumulate_method: str = "Accumulate"
    express_method: str = "Express"
    poll_schedule: Tuple[float, ...] = field(default=DEFAULT_POLL_SCHEDULE_SEC)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            shop=_get_env("SHOPIFY_SHOP", required=True),
            api_secret=_get_env("SHOPIFY_API_SECRET", required=True),
            api_key=_get_env("SHOPIFY_API_KEY", default=""),
            admin_token=_get_env("SHOPIFY_ADMIN_TOKEN", default=""),
            api_version=_get_env("SHOPIFY_API_VERSION", default="2025-01"),
            dry_run=_parse_bool(_get_env("DRY_RUN", default="false")),
            accumulate_method=_get_env("ACCUMULATE_SHIPPING_METHOD", default="Accumulate"),
            express_method=_get_env("EXPRESS_SHIPPING_METHOD", default="Express"),
            poll_schedule=_parse_schedule(_get_env("POLL_SCHEDULE_SEC", default="0,2,5,10,20")),
            log_level=_get_env("LOG_LEVEL", default="INFO").upper(),
        )
        if not settings.admin_token and not settings.api_key:
            raise RuntimeError("Set SHOPIFY_ADMIN_TOKEN, or SHOPIFY_API_KEY for the client-credentials grant")
        return settings
