"""
Result type for best-effort sub-steps.

Two steps of the facade must never fail the surrounding operation: resolving
the acting user on create and loading related rows for the update response.
They return an Outcome instead of raising; the caller logs the error and
carries on with the fallback value.

Example:
    >>> outcome = await Outcome.capture(store.current_actor())
    >>> actor = outcome.value_or(None)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Mapping, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or the exception that prevented it."""

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> Outcome[T]:
        return cls(error=error)

    @classmethod
    async def capture(cls, awaitable: Awaitable[T]) -> Outcome[T]:
        """Await and wrap any Exception into a failed Outcome."""
        try:
            return cls.success(await awaitable)
        except Exception as e:
            return cls.failure(e)

    def value_or(self, default: T) -> T:
        if self.error is not None:
            return default
        return self.value  # type: ignore[return-value]

    def log_failure(
        self,
        logger: logging.Logger,
        message: str,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Emit a warning when the step failed; no-op on success."""
        if self.error is None:
            return
        fields = dict(extra or {})
        fields["error"] = str(self.error)
        fields["error_type"] = type(self.error).__name__
        logger.warning(message, extra=fields)
