"""Process settings from a .env file and the environment.

Settings only supply CLI defaults. Values in os.environ win over the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values

from batch_tester.errors import ConfigError

ENV_PREFIX = "BATCH_TESTER_"


@dataclass(frozen=True)
class Settings:
    timeout_ms: float = 30000
    max_concurrent: int = 5
    retry_delay_ms: float = 1000
    retry_backoff_ms: float = 1000
    run_log: Optional[Path] = None


def _positive(env: Mapping[str, Optional[str]], name: str, default: float, integer: bool = False) -> float:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw) if integer else float(raw)
    except ValueError:
        kind = "an integer" if integer else "a number"
        raise ConfigError(f"{ENV_PREFIX}{name} must be {kind}, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be > 0")
    return value


def load_settings(env_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read BATCH_TESTER_* settings. A missing env file is a ConfigError."""
    env: dict[str, Optional[str]] = {}
    if env_path is not None:
        if not env_path.exists():
            raise ConfigError(f"File not found: {env_path}")
        env.update(dotenv_values(env_path))
    env.update(os.environ if environ is None else environ)

    max_concurrent = int(_positive(env, "MAX_CONCURRENT", 5, integer=True))
    if max_concurrent > 10:
        raise ConfigError(f"{ENV_PREFIX}MAX_CONCURRENT must be between 1 and 10")
    run_log = env.get(ENV_PREFIX + "RUN_LOG")
    return Settings(
        timeout_ms=_positive(env, "TIMEOUT_MS", 30000),
        max_concurrent=max_concurrent,
        retry_delay_ms=_positive(env, "RETRY_DELAY_MS", 1000),
        retry_backoff_ms=_positive(env, "RETRY_BACKOFF_MS", 1000),
        run_log=Path(run_log) if run_log else None,
    )
