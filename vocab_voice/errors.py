from __future__ import annotations


class ProviderError(RuntimeError):
    """Base class for failures raised by provider adapters and resolvers."""


class EmptyPayloadError(ProviderError):
    """An upstream answered successfully but without the expected payload."""


class EmptyAudioError(EmptyPayloadError):
    def __init__(self, message: str = "empty audio") -> None:
        super().__init__(message)


class RateLimitError(ProviderError):
    """Raised instead of calling a provider whose request window is full.

    ``wait_seconds`` is the retry hint callers map to a ``Retry-After`` response.
    """

    def __init__(self, provider: str, wait_seconds: int) -> None:
        super().__init__(f"rate limited: {provider}, retry after {wait_seconds}s")
        self.provider = provider
        self.wait_seconds = wait_seconds


class NoAudioAvailableError(ProviderError):
    def __init__(self, message: str = "no audio available", errors: list[Exception] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class AllStrategiesFailedError(ProviderError):
    def __init__(self, errors: dict[str, Exception]) -> None:
        detail = "; ".join(f"{name}: {exc}" for name, exc in errors.items()) or "no strategies configured"
        super().__init__(f"all strategies failed ({detail})")
        self.errors = dict(errors)


def _leaf_errors(exc: Exception) -> list[Exception]:
    if isinstance(exc, NoAudioAvailableError) and exc.errors:
        return [leaf for inner in exc.errors for leaf in _leaf_errors(inner)]
    if isinstance(exc, AllStrategiesFailedError) and exc.errors:
        return [leaf for inner in exc.errors.values() for leaf in _leaf_errors(inner)]
    return [exc]


def rate_limit_cause(errors: list[Exception]) -> RateLimitError | None:
    """Return the shortest-wait ``RateLimitError`` when every failure was a rate limit."""
    leaves = [leaf for exc in errors for leaf in _leaf_errors(exc)]
    if not leaves or not all(isinstance(leaf, RateLimitError) for leaf in leaves):
        return None
    return min(leaves, key=lambda leaf: leaf.wait_seconds)
