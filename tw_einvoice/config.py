"""Environment-driven settings.

EINVOICE_API_ENDPOINT                backend URL that appends rows to the sheet
EINVOICE_BEARER_TOKEN                optional bearer token for that backend
EINVOICE_SOURCE                      value written to the `source` column (default: cli)
EINVOICE_SECOND_QR_TIMEOUT_SECONDS   how long a first code waits for its pair (default: 60)
EINVOICE_HTTP_TIMEOUT_SECONDS        request timeout for submissions (default: 15)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


# Placeholder shipped in sample .env files; treated as "no token".
PLACEHOLDER_TOKENS = ("YOUR_BEARER_TOKEN", "your_secure_random_token_here")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    api_endpoint: str = ""
    bearer_token: str = ""
    source: str = "cli"
    second_qr_timeout_seconds: float = 60.0
    http_timeout_seconds: float = 15.0

    @property
    def has_bearer_token(self) -> bool:
        return bool(self.bearer_token) and self.bearer_token not in PLACEHOLDER_TOKENS

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            api_endpoint=(env.get("EINVOICE_API_ENDPOINT") or "").strip(),
            bearer_token=(env.get("EINVOICE_BEARER_TOKEN") or "").strip(),
            source=(env.get("EINVOICE_SOURCE") or "cli").strip() or "cli",
            second_qr_timeout_seconds=_env_float(env, "EINVOICE_SECOND_QR_TIMEOUT_SECONDS", 60.0),
            http_timeout_seconds=_env_float(env, "EINVOICE_HTTP_TIMEOUT_SECONDS", 15.0),
        )
