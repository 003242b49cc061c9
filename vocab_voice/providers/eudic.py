from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, quote

from bs4 import BeautifulSoup

from vocab_voice.models import PhoneticsResult
from vocab_voice.services.http import ClientFactory, build_async_client
from vocab_voice.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

EUDIC_SEARCH_URL = "https://dict.eudic.net/dicts/MiniDictSearch2"
FRDIC_SPEAK_URL = "https://api.frdic.com/api/v2/speech/speakweb"
FRDIC_VOICES = {"us": "en_us_female", "uk": "en_uk_male"}


@dataclass(frozen=True)
class VoiceParams:
    langid: str
    voicename: str
    txt: str

    def speak_url(self) -> str:
        return frdic_speak_url(voicename=self.voicename, txt=self.txt, langid=self.langid)

    def to_dict(self) -> dict:
        return {"langid": self.langid, "voicename": self.voicename, "txt": self.txt}


@dataclass
class EudicParsed:
    word: str
    ipa_uk: str | None
    ipa_us: str | None
    voice_uk: VoiceParams | None
    voice_us: VoiceParams | None

    def to_phonetics(self) -> PhoneticsResult:
        return PhoneticsResult(
            word=self.word,
            ipa_us=self.ipa_us,
            ipa_uk=self.ipa_uk,
            audio_url_us=self.voice_us.speak_url() if self.voice_us else None,
            audio_url_uk=self.voice_uk.speak_url() if self.voice_uk else None,
            provider="eudic",
        )

    def to_dict(self) -> dict:
        return {
            "word": self.word,
            "ipa_uk": self.ipa_uk,
            "ipa_us": self.ipa_us,
            "voice_uk": self.voice_uk.to_dict() if self.voice_uk else None,
            "voice_us": self.voice_us.to_dict() if self.voice_us else None,
        }


def encode_frdic_text(text: str) -> str:
    return "QYN" + base64.b64encode(text.encode("utf-8")).decode("ascii")


def frdic_speak_url(*, voicename: str, txt: str, langid: str = "en") -> str:
    return f"{FRDIC_SPEAK_URL}?langid={quote(langid)}&voicename={quote(voicename)}&txt={quote(txt, safe='')}"


def parse_voice_params(data_rel: str) -> VoiceParams | None:
    params = parse_qs(data_rel or "")
    langid = (params.get("langid") or [""])[0]
    voicename = (params.get("voicename") or [""])[0]
    txt = (params.get("txt") or [""])[0]
    if langid and voicename and txt:
        return VoiceParams(langid=langid, voicename=voicename, txt=txt)
    return None


def parse_eudic_html(page: str, word: str) -> EudicParsed:
    """Extract UK/US transcriptions and voice parameters from a MiniDictSearch2 page.

    The strict pass looks for the element whose ``data-rel`` names the accent's
    voice and whose ``phontype`` marker matches, then reads its ``Phonitic``
    span. When that fails, the positional pass assigns the first slash-wrapped
    ``Phonitic`` span to UK and the second to US; that pass has no accent
    marker to check against and can swap accents if the page layout changes.
    """

    soup = BeautifulSoup(page or "", "html.parser")
    uk_block = _accent_block(soup, FRDIC_VOICES["uk"], "英")
    us_block = _accent_block(soup, FRDIC_VOICES["us"], "美")
    positional = [
        text
        for text in (node.get_text().strip() for node in soup.find_all("span", class_="Phonitic"))
        if len(text) > 2 and text.startswith("/") and text.endswith("/")
    ]

    if uk_block:
        ipa_uk = _clean_ipa(uk_block[1])
    else:
        ipa_uk = _clean_ipa(positional[0]) if len(positional) > 0 else None
    if us_block:
        ipa_us = _clean_ipa(us_block[1])
    else:
        ipa_us = _clean_ipa(positional[1]) if len(positional) > 1 else None

    parsed = EudicParsed(
        word=word.strip().lower(),
        ipa_uk=ipa_uk,
        ipa_us=ipa_us,
        voice_uk=parse_voice_params(uk_block[0]) if uk_block else None,
        voice_us=parse_voice_params(us_block[0]) if us_block else None,
    )
    logger.debug("eudic parsed %s: uk=%s us=%s", parsed.word, parsed.ipa_uk, parsed.ipa_us)
    return parsed


class EudicDictionary:
    name = "eudic"

    def __init__(self, limiter: RateLimiter, *, client_factory: ClientFactory = build_async_client) -> None:
        self.limiter = limiter
        self.client_factory = client_factory

    async def fetch_page(self, word: str) -> str:
        self.limiter.limit(self.name)
        logger.info("eudic lookup: %s", word)
        async with self.client_factory() as client:
            resp = await client.get(
                EUDIC_SEARCH_URL,
                params={"word": word},
                headers={
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
            resp.raise_for_status()
            return resp.text

    async def parse(self, word: str) -> EudicParsed:
        return parse_eudic_html(await self.fetch_page(word), word)

    async def lookup(self, word: str) -> PhoneticsResult:
        return (await self.parse(word)).to_phonetics()


def _clean_ipa(value: str) -> str | None:
    text = re.sub(r"[/\\]", "", str(value or "")).strip()
    return text or None


def _accent_block(soup: BeautifulSoup, voicename: str, marker: str) -> tuple[str, str] | None:
    for element in soup.find_all(attrs={"data-rel": True}):
        data_rel = element.get("data-rel") or ""
        if f"voicename={voicename}" not in data_rel:
            continue
        phontype = element.find("span", class_="phontype")
        phonitic = element.find("span", class_="Phonitic")
        if phontype is None or phonitic is None or phontype.get_text(strip=True) != marker:
            continue
        return data_rel, phonitic.get_text()
    return None
