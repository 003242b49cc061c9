from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Sequence
from urllib.parse import urlparse

import httpx

from vocab_voice.config import MAX_UPLOAD_BYTES
from vocab_voice.errors import (
    AllStrategiesFailedError,
    EmptyAudioError,
    NoAudioAvailableError,
    ProviderError,
    rate_limit_cause,
)
from vocab_voice.models import ACCENTS, AudioResult, PhoneticsResult, StoredAudio, normalize_word
from vocab_voice.pipeline.phonetics import PhoneticsResolver
from vocab_voice.pipeline.strategies import FallbackChain, Strategy
from vocab_voice.providers.tts import SpeechProvider
from vocab_voice.services.http import ClientFactory, build_async_client, download_audio
from vocab_voice.storage.objects import LocalAudioStorage, extension_for, gen_audio_key, is_audio_content_type

logger = logging.getLogger(__name__)

Downloader = Callable[[str], Awaitable[bytes]]


class AudioResolver:
    """Turns phonetics lookups or speech synthesis into stored audio URLs."""

    def __init__(
        self,
        phonetics: PhoneticsResolver,
        storage: LocalAudioStorage,
        *,
        tts_providers: Sequence[SpeechProvider] = (),
        lookup_provider: str = "youdao",
        downloader: Downloader | None = None,
        client_factory: ClientFactory = build_async_client,
    ) -> None:
        self.phonetics = phonetics
        self.storage = storage
        self.tts_providers = list(tts_providers)
        self.lookup_provider = lookup_provider
        self.client_factory = client_factory
        self.downloader = downloader or (lambda url: download_audio(url, client_factory=client_factory))

    @property
    def tts_order(self) -> list[str]:
        return [provider.name for provider in self.tts_providers]

    async def generate_audio(
        self,
        word: str,
        accents: Iterable[str],
        existing: PhoneticsResult | dict | None = None,
    ) -> AudioResult:
        token = normalize_word(word)
        if not token:
            raise ValueError("word is empty")
        requested = _normalize_accents(accents)
        result = AudioResult()
        if not requested:
            return result

        known = existing
        if isinstance(existing, dict):
            known = PhoneticsResult.from_mapping(token, existing)
        candidates = {accent: known.audio_candidate(accent) if known else None for accent in requested}

        errors: list[Exception] = []
        if not all(candidates.values()):
            looked_up = await self._lookup_quietly(token, errors)
            if looked_up is not None:
                for accent in requested:
                    candidates[accent] = candidates[accent] or looked_up.audio_candidate(accent)

        tasks: list[Awaitable[StoredAudio]] = [
            self._store_from_url(token, accent, url) for accent, url in candidates.items() if url
        ]
        if not tasks:
            logger.info("no upstream audio for %r, synthesizing %s", token, ", ".join(requested))
            tasks = [self._synthesize_and_store(token, accent) for accent in requested]

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, StoredAudio):
                result.apply(outcome)
            elif isinstance(outcome, Exception):
                errors.append(outcome)
                logger.warning("audio task for %r failed: %s", token, outcome)
            else:
                raise outcome

        if result.mode == "none":
            limited = rate_limit_cause(errors)
            if limited is not None:
                raise limited
            raise NoAudioAvailableError(errors=errors)
        return result

    async def synthesize(self, word: str, accent: str = "us", provider: str | None = None) -> tuple[str, StoredAudio]:
        token = normalize_word(word)
        if not token:
            raise ValueError("word is empty")
        chain = self._tts_chain(_voice_accent(accent), only=provider)
        try:
            name, audio = await chain.run(token)
        except AllStrategiesFailedError as exc:
            limited = rate_limit_cause([exc])
            if limited is not None:
                raise limited
            raise
        stored = await asyncio.to_thread(self._upload, audio, token, accent)
        return name, stored

    def store_upload(self, data: bytes, *, word: str | None = None, content_type: str | None = None) -> StoredAudio:
        if not data:
            raise ValueError("audio file is empty")
        if not is_audio_content_type(content_type):
            raise ValueError(f"unsupported audio type: {content_type}")
        if len(data) > MAX_UPLOAD_BYTES:
            raise ValueError("audio file exceeds 10MB limit")
        key = gen_audio_key(word or "audio", None, extension_for(content_type))
        url = self.storage.upload(data, key, content_type or "audio/mpeg")
        return StoredAudio(accent="common", url=url, size=len(data))

    async def import_from_url(self, url: str, *, word: str | None = None) -> StoredAudio:
        parsed = urlparse(str(url or "").strip())
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("invalid audio url")
        async with self.client_factory() as client:
            resp = await client.get(url)
            resp.raise_for_status()
            content_type = resp.headers.get("content-type", "audio/mpeg")
            data = resp.content
        if not data:
            raise EmptyAudioError()
        return await asyncio.to_thread(self.store_upload, data, word=word, content_type=content_type)

    async def _lookup_quietly(self, token: str, errors: list[Exception]) -> PhoneticsResult | None:
        # Only audio URLs are wanted here, so transcription generation stays off.
        try:
            return await self.phonetics.lookup(token, self.lookup_provider, generate=False)
        except (ProviderError, httpx.HTTPError) as exc:
            errors.append(exc)
            logger.warning("phonetics lookup for audio of %r failed: %s", token, exc)
            return None

    async def _store_from_url(self, token: str, accent: str, url: str) -> StoredAudio:
        if self.storage.owns(url):
            return StoredAudio(accent=accent, url=url)
        data = await self.downloader(url)
        if not data:
            raise EmptyAudioError()
        return await asyncio.to_thread(self._upload, data, token, accent)

    async def _synthesize_and_store(self, token: str, accent: str) -> StoredAudio:
        try:
            name, data = await self._tts_chain(_voice_accent(accent)).run(token)
        except AllStrategiesFailedError as exc:
            raise NoAudioAvailableError(f"tts failed for {token} ({accent})", errors=list(exc.errors.values())) from exc
        logger.info("synthesized %s audio for %r with %s", accent, token, name)
        return await asyncio.to_thread(self._upload, data, token, accent)

    def _tts_chain(self, voice: str, *, only: str | None = None) -> FallbackChain[bytes]:
        providers = self.tts_providers
        if only:
            providers = [item for item in providers if item.name == only]
            if not providers:
                raise ValueError(f"unknown tts provider: {only}")
        strategies = [
            Strategy(provider.name, lambda text, provider=provider: provider.fetch_audio(text, voice))
            for provider in providers
        ]
        return FallbackChain(strategies, label="tts")

    def _upload(self, data: bytes, token: str, accent: str) -> StoredAudio:
        url = self.storage.upload(data, gen_audio_key(token, accent))
        return StoredAudio(accent=accent, url=url, size=len(data))


def _normalize_accents(accents: Iterable[str]) -> list[str]:
    ordered: list[str] = []
    for accent in accents or []:
        key = str(accent).strip().lower()
        if key not in ACCENTS:
            raise ValueError(f"unknown accent: {accent}")
        if key not in ordered:
            ordered.append(key)
    return ordered


def _voice_accent(accent: str) -> str:
    return "uk" if accent == "uk" else "us"
