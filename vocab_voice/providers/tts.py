from __future__ import annotations

import binascii
import logging
import os
from typing import Protocol

from vocab_voice.errors import EmptyAudioError, EmptyPayloadError, ProviderError
from vocab_voice.providers.eudic import FRDIC_VOICES, encode_frdic_text, frdic_speak_url
from vocab_voice.services.http import ClientFactory, build_async_client
from vocab_voice.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

MINIMAX_T2A_URL = "https://api.minimaxi.com/v1/t2a_v2"

OPENAI_VOICE_FALLBACK = {
    "us": "alloy",
    "uk": "fable",
}


class SpeechProvider(Protocol):
    name: str

    async def fetch_audio(self, word: str, accent: str = "us") -> bytes: ...


class FrdicSpeech:
    """frdic ``speakweb`` voices, the same recordings the Eudic page links to."""

    name = "frdic"

    def __init__(self, limiter: RateLimiter, *, client_factory: ClientFactory = build_async_client) -> None:
        self.limiter = limiter
        self.client_factory = client_factory

    async def fetch_audio(self, word: str, accent: str = "us", encoded_txt: str | None = None) -> bytes:
        self.limiter.limit(self.name)
        voice = FRDIC_VOICES.get(accent, FRDIC_VOICES["us"])
        url = frdic_speak_url(voicename=voice, txt=encoded_txt or encode_frdic_text(word))
        async with self.client_factory() as client:
            resp = await client.get(
                url,
                headers={"Accept": "audio/mpeg,audio/*,*/*", "Referer": "https://www.frdic.com/"},
            )
            resp.raise_for_status()
            payload = resp.content
        if not payload:
            raise EmptyAudioError()
        logger.info("frdic audio for %s (%s): %d bytes", word, accent, len(payload))
        return payload


class MiniMaxSpeech:
    name = "minimax"

    def __init__(self, *, client_factory: ClientFactory = build_async_client) -> None:
        self.client_factory = client_factory
        self.api_key = os.getenv("MINIMAX_API_KEY")
        self.url = os.getenv("VOCAB_VOICE_MINIMAX_TTS_URL", MINIMAX_T2A_URL)
        self.model = os.getenv("VOCAB_VOICE_MINIMAX_TTS_MODEL", "speech-2.6-hd")
        self.voice_id = os.getenv("VOCAB_VOICE_MINIMAX_VOICE", "male-qn-qingse")

    def available(self) -> bool:
        return bool(self.api_key)

    async def fetch_audio(self, word: str, accent: str = "us") -> bytes:
        # MiniMax has a single English voice; accent only affects logging.
        if not self.api_key:
            raise ProviderError("MINIMAX_API_KEY not configured for TTS")

        payload = {
            "model": self.model,
            "text": word,
            "stream": False,
            "voice_setting": {"voice_id": self.voice_id, "speed": 1, "vol": 1, "pitch": 0, "emotion": "neutral"},
            "audio_setting": {"sample_rate": 32000, "bitrate": 128000, "format": "mp3", "channel": 1},
            "subtitle_enable": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with self.client_factory() as client:
            resp = await client.post(self.url, headers=headers, json=payload)
            resp.raise_for_status()
            data = resp.json()
        audio = decode_minimax_audio(data)
        logger.info("minimax audio for %s (%s): %d bytes", word, accent, len(audio))
        return audio


class OpenAISpeech:
    name = "openai"

    def __init__(self, *, client_factory: ClientFactory = build_async_client) -> None:
        self.client_factory = client_factory
        self.api_key = os.getenv("OPENAI_API_KEY")
        self.base_url = os.getenv("VOCAB_VOICE_OPENAI_BASE_URL", "https://api.openai.com/v1")
        self.model = os.getenv("VOCAB_VOICE_TTS_MODEL", "gpt-4o-mini-tts")

    def available(self) -> bool:
        return bool(self.api_key)

    async def fetch_audio(self, word: str, accent: str = "us") -> bytes:
        if not self.api_key:
            raise ProviderError("OPENAI_API_KEY not configured for TTS")

        url = self.base_url.rstrip("/") + "/audio/speech"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "voice": OPENAI_VOICE_FALLBACK.get(accent, "alloy"),
            "input": word,
            "format": "mp3",
        }
        async with self.client_factory() as client:
            resp = await client.post(url, headers=headers, json=payload)
            resp.raise_for_status()
            audio = resp.content
        if not audio:
            raise EmptyAudioError()
        return audio


def decode_minimax_audio(data: dict) -> bytes:
    base = data.get("base_resp") or {}
    if base.get("status_code") != 0:
        raise ProviderError(f"minimax error: {base.get('status_msg') or 'unknown error'}")
    audio_hex = str((data.get("data") or {}).get("audio") or "").strip()
    if not audio_hex:
        raise EmptyPayloadError("no audio")
    if audio_hex.startswith("0x"):
        audio_hex = audio_hex[2:]
    try:
        audio = binascii.unhexlify(audio_hex)
    except (binascii.Error, ValueError) as exc:
        raise EmptyPayloadError(f"invalid minimax audio payload: {exc}") from exc
    if not audio:
        raise EmptyAudioError()
    return audio
