"""Retry tunables and the exponential backoff curve used between stage attempts."""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    multiplier: float = 2

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must be non-negative")

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "RetryConfig":
        """Build from the ``retry`` section of the pipeline config (missing keys keep defaults)."""
        section = (cfg or {}).get("retry") or {}
        defaults = cls()
        return cls(
            max_attempts=int(section.get("max_attempts", defaults.max_attempts)),
            base_delay_ms=int(section.get("base_delay_ms", defaults.base_delay_ms)),
            max_delay_ms=int(section.get("max_delay_ms", defaults.max_delay_ms)),
            multiplier=float(section.get("multiplier", defaults.multiplier)),
        )


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_retry_delay(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> int:
    """Delay in milliseconds before retrying after failed ``attempt`` (1-based).

    With defaults: 1000, 2000, 4000, ... capped at ``max_delay_ms``.
    """
    exponent = max(attempt, 1) - 1
    delay = config.base_delay_ms * (config.multiplier ** exponent)
    return int(min(delay, config.max_delay_ms))
