"""Configuration for SDB.

Defines the tunable parameters for locking and error reporting. A config
value is built once per request and threaded through the call chain.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import InvalidInputError

DEFAULT_LOCK_STALE_MS = 2 * 60 * 1000  # 2 minutes
DEFAULT_LOCK_RETRY_MS = 100

ENV_LOCK_STALE_MS = "SDB_LOCK_STALE_MS"
ENV_LOCK_RETRY_MS = "SDB_LOCK_RETRY_MS"
ENV_LOCK_WAIT_MS = "SDB_LOCK_WAIT_MS"
ENV_DEBUG = "SDB_DEBUG"


@dataclass(frozen=True)
class SDBConfig:
    """Configuration parameters for an SDB request.

    Attributes:
        lock_stale_ms: Age after which a held lock is presumed abandoned
        lock_retry_ms: Base backoff between lock attempts (jitter adds up to the same again)
        lock_wait_ms: Total time to wait for a lock; defaults to lock_stale_ms
        debug: Include stack traces in error responses
    """

    lock_stale_ms: int = DEFAULT_LOCK_STALE_MS
    lock_retry_ms: int = DEFAULT_LOCK_RETRY_MS
    lock_wait_ms: int | None = None
    debug: bool = False

    def __post_init__(self) -> None:
        for name in ("lock_stale_ms", "lock_retry_ms"):
            if getattr(self, name) < 0:
                raise InvalidInputError(f"{name} must be >= 0", context={name: getattr(self, name)})
        if self.lock_wait_ms is not None and self.lock_wait_ms < 0:
            raise InvalidInputError("lock_wait_ms must be >= 0", context={"lock_wait_ms": self.lock_wait_ms})

    @property
    def effective_wait_ms(self) -> int:
        return self.lock_stale_ms if self.lock_wait_ms is None else self.lock_wait_ms

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> SDBConfig:
        """Build a config from SDB_* environment variables."""
        env = os.environ if environ is None else environ
        values: dict = {
            "lock_stale_ms": _env_ms(env, ENV_LOCK_STALE_MS, DEFAULT_LOCK_STALE_MS),
            "lock_retry_ms": _env_ms(env, ENV_LOCK_RETRY_MS, DEFAULT_LOCK_RETRY_MS),
            "lock_wait_ms": _env_ms(env, ENV_LOCK_WAIT_MS, None),
            "debug": env.get(ENV_DEBUG, "").strip().lower() in ("1", "true", "yes", "on"),
        }
        values.update(overrides)
        return cls(**values)


def _env_ms(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise InvalidInputError(
            f"Invalid value for {name}: '{raw}'. Must be an integer number of milliseconds.",
            context={"variable": name, "value": raw},
        ) from None
    if value < 0:
        raise InvalidInputError(f"{name} must be >= 0", context={"variable": name, "value": raw})
    return value
