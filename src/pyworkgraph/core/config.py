"""
Engine configuration.

Defaults work out of the box; deployments override them either in code
or through ``WORKGRAPH_*`` environment variables:

    WORKGRAPH_PROJECT                    project id used to namespace keys
    WORKGRAPH_CONCURRENCY                max units running at once
    WORKGRAPH_TIMEOUT                    default per-unit timeout (seconds)
    WORKGRAPH_RETRY_INITIAL_DELAY_MS     first retry delay
    WORKGRAPH_RETRY_MAX_DELAY_MS         cap on retry delay
    WORKGRAPH_RETRY_MULTIPLIER           backoff multiplier
    WORKGRAPH_CHECKPOINT_INTERVAL        seconds between auto-checkpoints
    WORKGRAPH_MAX_CHECKPOINTS            checkpoints kept per graph
    WORKGRAPH_CHECKPOINT_MAX_AGE         seconds before a checkpoint expires
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from pyworkgraph.core.errors import ConfigurationError
from pyworkgraph.models import RetryPolicy

__all__ = ["EngineConfig"]

ENV_PREFIX = "WORKGRAPH_"


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables for an Engine.

    Example:
        config = EngineConfig.from_env()
        engine = Engine(storage, registry, config)
    """

    project_id: str = "default"
    """Namespace for every persisted key."""

    concurrency_limit: int = 4
    """Maximum units running at once per graph."""

    default_timeout_seconds: float | None = None
    """Timeout for kinds registered without one, None disables."""

    retry_policy: RetryPolicy = RetryPolicy.STANDARD

    checkpoint_interval_seconds: float | None = None
    """Take an auto checkpoint this often while a graph runs, None disables."""

    max_checkpoints: int = 10
    checkpoint_max_age_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.concurrency_limit < 1:
            raise ConfigurationError(
                f"concurrency_limit must be >= 1, got {self.concurrency_limit}"
            )
        if self.max_checkpoints < 1:
            raise ConfigurationError(f"max_checkpoints must be >= 1, got {self.max_checkpoints}")
        if self.default_timeout_seconds is not None and self.default_timeout_seconds <= 0:
            raise ConfigurationError("default_timeout_seconds must be positive")
        if self.checkpoint_interval_seconds is not None and self.checkpoint_interval_seconds <= 0:
            raise ConfigurationError("checkpoint_interval_seconds must be positive")

    def with_overrides(self, **changes: Any) -> EngineConfig:
        """Copy with some fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """
        Build a config from ``WORKGRAPH_*`` environment variables.

        Unset variables keep their defaults.

        Args:
            environ: Mapping to read instead of os.environ (for tests)

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def read(name: str, parse: Callable[[str], Any], default: Any) -> Any:
            raw = env.get(ENV_PREFIX + name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return parse(raw.strip())
            except ValueError as e:
                raise ConfigurationError(f"Invalid {ENV_PREFIX}{name}={raw!r}: {e}") from e

        policy = RetryPolicy(
            initial_delay_ms=read(
                "RETRY_INITIAL_DELAY_MS", int, defaults.retry_policy.initial_delay_ms
            ),
            max_delay_ms=read("RETRY_MAX_DELAY_MS", int, defaults.retry_policy.max_delay_ms),
            backoff_multiplier=read(
                "RETRY_MULTIPLIER", float, defaults.retry_policy.backoff_multiplier
            ),
        )

        return cls(
            project_id=read("PROJECT", str, defaults.project_id),
            concurrency_limit=read("CONCURRENCY", int, defaults.concurrency_limit),
            default_timeout_seconds=read("TIMEOUT", float, defaults.default_timeout_seconds),
            retry_policy=policy,
            checkpoint_interval_seconds=read(
                "CHECKPOINT_INTERVAL", float, defaults.checkpoint_interval_seconds
            ),
            max_checkpoints=read("MAX_CHECKPOINTS", int, defaults.max_checkpoints),
            checkpoint_max_age_seconds=read(
                "CHECKPOINT_MAX_AGE", float, defaults.checkpoint_max_age_seconds
            ),
        )
