from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from vocab_voice.errors import AllStrategiesFailedError, EmptyPayloadError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Strategy(Generic[T]):
    name: str
    attempt: Callable[[str], Awaitable[T]]


class FallbackChain(Generic[T]):
    """Ordered strategies tried left to right; the first accepted result wins.

    A strategy fails by raising or by returning a value the ``accept``
    predicate rejects. When every strategy fails the collected errors are
    raised together as ``AllStrategiesFailedError``.
    """

    def __init__(
        self,
        strategies: Sequence[Strategy[T]],
        *,
        accept: Callable[[T], bool] = bool,
        label: str = "fallback",
    ) -> None:
        self.strategies = list(strategies)
        self.accept = accept
        self.label = label

    @property
    def names(self) -> list[str]:
        return [item.name for item in self.strategies]

    async def run(self, subject: str) -> tuple[str, T]:
        errors: dict[str, Exception] = {}
        for strategy in self.strategies:
            try:
                value = await strategy.attempt(subject)
            except Exception as exc:
                errors[strategy.name] = exc
                logger.warning("[%s] %s failed for %s: %s", self.label, strategy.name, subject, exc)
                continue
            if not self.accept(value):
                errors[strategy.name] = EmptyPayloadError(f"{strategy.name} returned nothing")
                logger.warning("[%s] %s returned nothing for %s", self.label, strategy.name, subject)
                continue
            return strategy.name, value
        raise AllStrategiesFailedError(errors)
