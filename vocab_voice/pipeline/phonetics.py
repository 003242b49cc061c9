from __future__ import annotations

import logging
import threading
from typing import Protocol, Sequence

from vocab_voice.errors import AllStrategiesFailedError
from vocab_voice.models import DICT_PROVIDERS, IPA_SOURCE_DICT, IPA_SOURCE_LLM, PhoneticsResult, normalize_word
from vocab_voice.pipeline.strategies import FallbackChain

logger = logging.getLogger(__name__)

AUTO = "auto"


class DictionaryProvider(Protocol):
    name: str

    async def lookup(self, word: str) -> PhoneticsResult: ...


class ProviderRotation:
    """Shared round-robin pointer for ``auto`` lookups.

    Every call advances to the provider after the last one used, so two
    consecutive auto lookups never hit the same dictionary.
    """

    def __init__(self, providers: Sequence[str] = DICT_PROVIDERS, *, last: str | None = None) -> None:
        if len(providers) < 2:
            raise ValueError("rotation needs at least two providers")
        self.providers = tuple(providers)
        self.last = last if last in self.providers else self.providers[0]
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            index = (self.providers.index(self.last) + 1) % len(self.providers)
            self.last = self.providers[index]
            return self.last


class PhoneticsResolver:
    def __init__(
        self,
        dictionaries: dict[str, DictionaryProvider],
        *,
        rotation: ProviderRotation,
        ipa_generators: FallbackChain[str] | None = None,
    ) -> None:
        self.dictionaries = dict(dictionaries)
        self.rotation = rotation
        self.ipa_generators = ipa_generators

    def resolve_provider(self, provider: str | None) -> str:
        selector = str(provider or AUTO).strip().lower()
        if selector == AUTO:
            return self.rotation.next()
        if selector not in self.dictionaries:
            raise ValueError(f"unknown dictionary provider: {provider}")
        return selector

    async def lookup(self, word: str, provider: str | None = AUTO, *, generate: bool = True) -> PhoneticsResult:
        """Dictionary lookup, then transcription generation when ``generate`` is set."""

        token = normalize_word(word)
        if not token:
            raise ValueError("word is empty")

        actual = self.resolve_provider(provider)
        logger.info("looking up %r with %s", token, actual)
        # Rate limit and transport errors propagate; callers map them distinctly.
        result = await self.dictionaries[actual].lookup(token)
        result.word = token
        result.provider = actual

        if result.has_ipa():
            result.ipa_source = IPA_SOURCE_DICT
            return result

        result.ipa_source = None
        if not generate or self.ipa_generators is None:
            return result

        try:
            source, ipa = await self.ipa_generators.run(token)
        except AllStrategiesFailedError as exc:
            logger.warning("no IPA for %r from dictionary or generators: %s", token, exc)
            return result

        logger.info("IPA for %r generated by %s", token, source)
        result.ipa_us = ipa
        result.ipa_uk = ipa
        result.ipa_source = IPA_SOURCE_LLM
        return result
