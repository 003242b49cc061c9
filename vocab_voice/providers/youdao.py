from __future__ import annotations

import logging
import os
from urllib.parse import quote

from vocab_voice.errors import EmptyAudioError
from vocab_voice.models import PhoneticsResult
from vocab_voice.services.http import ClientFactory, build_async_client
from vocab_voice.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

YOUDAO_API = "https://dict.youdao.com/jsonapi_s?doctype=json&jsonversion=4"
YOUDAO_VOICE = "https://dict.youdao.com/dictvoice"
VOICE_TYPES = {"uk": 1, "us": 2}


def dictvoice_url(audio: str, accent: str = "us") -> str:
    return f"{YOUDAO_VOICE}?audio={quote(audio, safe='')}&type={VOICE_TYPES.get(accent, 2)}"


def parse_youdao_payload(word: str, payload: dict | None) -> PhoneticsResult:
    """Map a ``jsonapi_s`` response onto the common phonetics slots.

    Only ``simple.word[0]`` is read. A word that has a generic ``speech`` clip
    but no dedicated US/UK clip fills only the common ``audio_url`` so the same
    recording is not stored twice.
    """

    entry = _first_entry(payload)
    usphone = _text(entry.get("usphone"))
    ukphone = _text(entry.get("ukphone"))
    phone = _text(entry.get("phone"))
    usspeech = _text(entry.get("usspeech"))
    ukspeech = _text(entry.get("ukspeech"))
    speech = _text(entry.get("speech"))

    use_common_audio = bool(speech and not usspeech and not ukspeech)
    if use_common_audio:
        audio_url = dictvoice_url(speech, "us")
    elif usspeech:
        audio_url = dictvoice_url(usspeech, "us")
    else:
        audio_url = None

    return PhoneticsResult(
        word=word.strip().lower(),
        ipa_us=usphone,
        ipa_uk=ukphone,
        ipa=phone,
        audio_url_us=dictvoice_url(usspeech, "us") if usspeech else None,
        audio_url_uk=dictvoice_url(ukspeech, "uk") if ukspeech else None,
        audio_url=audio_url,
        provider="youdao",
    )


class YoudaoDictionary:
    name = "youdao"

    def __init__(self, limiter: RateLimiter, *, client_factory: ClientFactory = build_async_client) -> None:
        self.limiter = limiter
        self.client_factory = client_factory
        self.sign_key = os.getenv("YOUDAO_SIGN_KEY", "")

    async def lookup(self, word: str) -> PhoneticsResult:
        self.limiter.limit(self.name)
        logger.info("youdao lookup: %s", word)
        form = {
            "q": word,
            "le": "en",
            "t": "3",
            "client": "web",
            "sign": self.sign_key,
            "keyfrom": "webdict",
        }
        async with self.client_factory() as client:
            resp = await client.post(YOUDAO_API, data=form)
            resp.raise_for_status()
            payload = resp.json()
        result = parse_youdao_payload(word, payload if isinstance(payload, dict) else None)
        logger.debug("youdao parsed %s: us=%s uk=%s ipa=%s", word, result.ipa_us, result.ipa_uk, result.ipa)
        return result

    async def fetch_audio(self, word: str, accent: str = "us") -> bytes:
        self.limiter.limit(self.name)
        url = dictvoice_url(word, "uk" if accent == "uk" else "us")
        async with self.client_factory() as client:
            resp = await client.get(url)
            resp.raise_for_status()
            payload = resp.content
        if not payload:
            logger.warning("youdao returned empty audio for %s (%s)", word, accent)
            raise EmptyAudioError()
        logger.info("youdao audio for %s (%s): %d bytes", word, accent, len(payload))
        return payload


def _first_entry(payload: dict | None) -> dict:
    if not isinstance(payload, dict):
        return {}
    simple = payload.get("simple")
    if not isinstance(simple, dict):
        return {}
    words = simple.get("word")
    if not isinstance(words, list) or not words:
        return {}
    entry = words[0]
    return entry if isinstance(entry, dict) else {}


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
