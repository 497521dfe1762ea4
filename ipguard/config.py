"""Guard settings and environment loading utilities."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

DEFAULT_MAX_SIZE = 10 * 1024 * 1024
DEFAULT_WINDOW_MS = 30 * 60 * 1000
DEFAULT_LIMIT = 1000


def _load_dotenv() -> None:
    env_path = Path(".env")
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


_load_dotenv()


def _positive_int(value: Any, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise RuntimeError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise RuntimeError(f"{name} must be an integer, got {value!r}") from None
    if number <= 0:
        raise RuntimeError(f"{name} must be positive, got {number}")
    return number


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EndpointRule:
    """A ``(method, pattern)`` pair selecting requests to persist."""

    method: str
    pattern: str

    @classmethod
    def create(cls, method: Optional[str], pattern: str) -> "EndpointRule":
        method = (method or "*").strip()
        return cls(method="*" if method == "*" else method.upper(), pattern=pattern.strip())


def parse_rules(raw: Optional[str]) -> Tuple[EndpointRule, ...]:
    """Parse ``"POST /api/*, /login"`` into endpoint rules."""

    rules = []
    for item in (raw or "").split(","):
        parts = item.split(None, 1)
        if not parts:
            continue
        if len(parts) == 1:
            rules.append(EndpointRule.create("*", parts[0]))
        else:
            rules.append(EndpointRule.create(parts[0], parts[1]))
    return tuple(rules)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the request guard."""

    data_dir: Path = Path("logs")
    save_endpoints: Tuple[EndpointRule, ...] = field(default_factory=tuple)
    max_size: int = DEFAULT_MAX_SIZE
    rate_limit_window_ms: int = DEFAULT_WINDOW_MS
    rate_limit_requests: int = DEFAULT_LIMIT
    geoip_db_path: Optional[str] = None
    trust_forwarded: bool = True
    admin_token: Optional[str] = None
    log_level: str = "INFO"

    @property
    def blocked_ips_path(self) -> Path:
        return self.data_dir / "blockedIps.json"

    @property
    def rate_limit_path(self) -> Path:
        return self.data_dir / "rateLimit.json"

    @property
    def requests_path(self) -> Path:
        return self.data_dir / "requests.json"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=Path(os.getenv("IPGUARD_DATA_DIR") or "logs"),
            save_endpoints=parse_rules(os.getenv("IPGUARD_SAVE_ENDPOINTS")),
            max_size=_positive_int(
                os.getenv("IPGUARD_MAX_SIZE"), "IPGUARD_MAX_SIZE", DEFAULT_MAX_SIZE
            ),
            rate_limit_window_ms=_positive_int(
                os.getenv("IPGUARD_RATE_LIMIT_WINDOW_MS"),
                "IPGUARD_RATE_LIMIT_WINDOW_MS",
                DEFAULT_WINDOW_MS,
            ),
            rate_limit_requests=_positive_int(
                os.getenv("IPGUARD_RATE_LIMIT_LIMIT"), "IPGUARD_RATE_LIMIT_LIMIT", DEFAULT_LIMIT
            ),
            geoip_db_path=os.getenv("IPGUARD_GEOIP_DB") or None,
            trust_forwarded=_flag(os.getenv("IPGUARD_TRUST_FORWARDED"), True),
            admin_token=os.getenv("IPGUARD_ADMIN_TOKEN") or None,
            log_level=(os.getenv("IPGUARD_LOG_LEVEL") or "INFO").upper(),
        )

    @classmethod
    def from_options(cls, options: Mapping[str, Any], **overrides: Any) -> "Settings":
        """Build settings from the ``saveEndpoints``/``maxSize``/``rateLimitConfig`` mapping.

        Keys missing from ``options`` fall back to the defaults; ``overrides``
        sets the remaining dataclass fields (``data_dir``, ``geoip_db_path``...).
        """

        rate_config = options.get("rateLimitConfig") or {}
        rules = tuple(
            EndpointRule.create(rule.get("method"), rule.get("endpoint") or "")
            for rule in options.get("saveEndpoints") or ()
        )
        return cls(
            save_endpoints=rules,
            max_size=_positive_int(options.get("maxSize"), "maxSize", DEFAULT_MAX_SIZE),
            rate_limit_window_ms=_positive_int(
                rate_config.get("window"), "rateLimitConfig.window", DEFAULT_WINDOW_MS
            ),
            rate_limit_requests=_positive_int(
                rate_config.get("limit"), "rateLimitConfig.limit", DEFAULT_LIMIT
            ),
            **overrides,
        )


@lru_cache()
def get_settings() -> Settings:
    """Return cached guard settings."""

    return Settings.from_env()
