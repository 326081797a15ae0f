"""Configuration management for domharvest.

Loads engine configuration from environment variables with .env file support.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from .errors import ErrorCallback

# Load .env file from project root
_env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(_env_path)

LOG_LEVELS = ("debug", "info", "warn", "error")
WAIT_UNTIL_STATES = ("load", "domcontentloaded", "networkidle")


@dataclass
class LimitSpec:
    """A flat token-bucket limit: `requests` permits every `per` seconds."""

    requests: int
    per: float = 1.0

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self.requests / self.per

    @classmethod
    def parse(cls, value: "str | dict[str, Any] | LimitSpec") -> "LimitSpec":
        """Parse "10/60", {"requests": 10, "per": 60} or an existing spec."""
        if isinstance(value, LimitSpec):
            return value
        if isinstance(value, str):
            requests, _, per = value.partition("/")
            return cls(requests=int(requests), per=float(per or 1.0))
        return cls(requests=int(value["requests"]), per=float(value.get("per", 1.0)))


@dataclass
class RateLimitConfig:
    """Rate limit configuration, global and/or per target domain."""

    global_limit: Optional[LimitSpec] = None
    per_domain: Optional[LimitSpec] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RateLimitConfig":
        """Build from {requests, per} or {global: {...}, per_domain: {...}}.

        A flat {requests, per} mapping is treated as a global limit.
        """
        if "requests" in data:
            return cls(global_limit=LimitSpec.parse(data))

        global_data = data.get("global")
        domain_data = data.get("per_domain", data.get("perDomain"))
        return cls(
            global_limit=LimitSpec.parse(global_data) if global_data else None,
            per_domain=LimitSpec.parse(domain_data) if domain_data else None,
        )

    @property
    def enabled(self) -> bool:
        return self.global_limit is not None or self.per_domain is not None


@dataclass
class HarvesterConfig:
    """Engine-level configuration."""

    timeout: float = 30.0  # Per-phase timeout in seconds
    log_level: str = "info"
    default_concurrency: int = 5
    rate_limit: Optional[RateLimitConfig] = None
    on_error: Optional[ErrorCallback] = None

    # Browser context options (used by the CLI's page factory)
    headless: bool = True
    user_agent: Optional[str] = None
    viewport: Optional[dict[str, int]] = None
    extra_headers: dict[str, str] = field(default_factory=dict)

    def validate(self) -> list[str]:
        """Validate configuration values.

        Returns:
            List of validation error messages, empty if valid.
        """
        errors = []
        if self.timeout <= 0:
            errors.append("timeout must be positive")
        if self.log_level not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        if self.default_concurrency < 1:
            errors.append("default_concurrency must be at least 1")
        if self.rate_limit:
            for name, spec in (
                ("global", self.rate_limit.global_limit),
                ("per_domain", self.rate_limit.per_domain),
            ):
                if spec and (spec.requests < 1 or spec.per <= 0):
                    errors.append(f"{name} rate limit needs requests >= 1 and per > 0")
        return errors


def _parse_rate_limit_env() -> Optional[RateLimitConfig]:
    global_env = os.environ.get("DOMHARVEST_RATE_LIMIT", "")
    domain_env = os.environ.get("DOMHARVEST_DOMAIN_RATE_LIMIT", "")
    if not global_env and not domain_env:
        return None
    return RateLimitConfig(
        global_limit=LimitSpec.parse(global_env) if global_env else None,
        per_domain=LimitSpec.parse(domain_env) if domain_env else None,
    )


def get_config() -> HarvesterConfig:
    """Load configuration from environment variables.

    Returns:
        HarvesterConfig instance populated from environment.
    """
    return HarvesterConfig(
        timeout=float(os.environ.get("DOMHARVEST_TIMEOUT", "30")),
        log_level=os.environ.get("DOMHARVEST_LOG_LEVEL", "info").lower(),
        default_concurrency=int(os.environ.get("DOMHARVEST_CONCURRENCY", "5")),
        rate_limit=_parse_rate_limit_env(),
        headless=os.environ.get("DOMHARVEST_HEADLESS", "true").lower() != "false",
        user_agent=os.environ.get("DOMHARVEST_USER_AGENT") or None,
    )
