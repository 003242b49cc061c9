from __future__ import annotations

import asyncio
import binascii
from urllib.parse import parse_qs

import httpx
import pytest

from vocab_voice.config import RateLimitConfig
from vocab_voice.errors import EmptyAudioError, EmptyPayloadError, ProviderError, RateLimitError
from vocab_voice.providers.eudic import EudicDictionary, encode_frdic_text, parse_eudic_html, parse_voice_params
from vocab_voice.providers.tts import FrdicSpeech, MiniMaxSpeech, decode_minimax_audio
from vocab_voice.providers.youdao import YoudaoDictionary, parse_youdao_payload
from vocab_voice.services.http import download_audio
from vocab_voice.services.llm import LLMService, clean_ipa
from vocab_voice.services.rate_limit import RateLimiter

from fakes import EUDIC_PAGE, FakeUpstream


def test_youdao_payload_with_dedicated_clips():
    result = parse_youdao_payload(
        "Happy",
        {"simple": {"word": [{"usphone": "ˈhæpi", "ukphone": "ˈhæpɪ", "usspeech": "happy&type=2", "ukspeech": "happy&type=1"}]}},
    )

    assert result.word == "happy"
    assert result.ipa_us == "ˈhæpi"
    assert result.ipa_uk == "ˈhæpɪ"
    assert result.audio_url_us.endswith("type=2")
    assert result.audio_url_uk.endswith("type=1")
    assert result.audio_url == result.audio_url_us
    assert result.provider == "youdao"


def test_youdao_payload_with_only_common_speech():
    result = parse_youdao_payload("tomato", {"simple": {"word": [{"phone": "təˈmɑːtəʊ", "speech": "tomato"}]}})

    assert result.ipa == "təˈmɑːtəʊ"
    assert result.audio_url_us is None
    assert result.audio_url_uk is None
    assert result.audio_url.startswith("https://dict.youdao.com/dictvoice?audio=tomato")


def test_youdao_payload_without_entries_is_empty():
    for payload in (None, {}, {"simple": {}}, {"simple": {"word": []}}):
        result = parse_youdao_payload("ghost", payload)
        assert not result.has_ipa()
        assert result.audio_url is None


def test_eudic_strict_pass_pairs_accent_with_voice():
    parsed = parse_eudic_html(EUDIC_PAGE, "Happy")

    assert parsed.word == "happy"
    assert parsed.ipa_uk == "ˈhæpi"
    assert parsed.ipa_us == "ˈhæpɪ"
    assert parsed.voice_uk.voicename == "en_uk_male"
    assert parsed.voice_us.voicename == "en_us_female"
    phonetics = parsed.to_phonetics()
    assert "voicename=en_us_female" in phonetics.audio_url_us
    assert phonetics.provider == "eudic"


def test_eudic_strict_pass_tolerates_whitespace_and_entities():
    page = (
        '<a data-rel="langid=en&amp;voicename=en_uk_male&amp;txt=QYNaGFwcHk%3d">'
        '<span class="phontype">英</span>\n  <span class="Phonitic">/&#712;h&#230;pi/</span></a>'
    )
    parsed = parse_eudic_html(page, "happy")

    assert parsed.ipa_uk == "ˈhæpi"
    assert parsed.voice_uk.voicename == "en_uk_male"
    assert parsed.voice_uk.txt == "QYNaGFwcHk="
    assert parsed.ipa_us is None


def test_eudic_marker_must_match_voice():
    page = '<a data-rel="langid=en&amp;voicename=en_uk_male&amp;txt=QYN"><span class="phontype">美</span><span class="Phonitic">/x/</span></a>'
    parsed = parse_eudic_html(page, "x")

    assert parsed.voice_uk is None
    assert parsed.ipa_uk == "x"


def test_eudic_positional_fallback_assigns_first_to_uk():
    page = '<span class="Phonitic">/ʃɛdjuːl/</span> and <span class="Phonitic">/skɛdʒuːl/</span>'
    parsed = parse_eudic_html(page, "schedule")

    assert parsed.ipa_uk == "ʃɛdjuːl"
    assert parsed.ipa_us == "skɛdʒuːl"
    assert parsed.voice_uk is None
    assert parsed.voice_us is None


def test_eudic_page_without_phonetics():
    parsed = parse_eudic_html("<html><body>no entry</body></html>", "zzz")
    assert parsed.ipa_uk is None and parsed.ipa_us is None


def test_voice_params_require_all_fields():
    assert parse_voice_params("langid=en&voicename=en_uk_male") is None
    params = parse_voice_params("langid=en&voicename=en_uk_male&txt=QYNaGk%3d%3d")
    assert params.txt == "QYNaGk=="


def test_frdic_text_encoding():
    assert encode_frdic_text("happy") == "QYNaGFwcHk="


def test_youdao_lookup_posts_form_and_consumes_quota():
    upstream = FakeUpstream()
    limiter = RateLimiter()
    dictionary = YoudaoDictionary(limiter, client_factory=upstream.client_factory)

    result = asyncio.run(dictionary.lookup("happy"))

    assert result.ipa_us == "ˈhæpi"
    request = upstream.requests[0]
    assert request.method == "POST"
    form = parse_qs(request.content.decode())
    assert form["q"] == ["happy"]
    assert form["keyfrom"] == ["webdict"]
    assert limiter.request_count("youdao") == 1


def test_rate_limited_adapter_makes_no_request():
    upstream = FakeUpstream()
    limiter = RateLimiter({"eudic": RateLimitConfig(max_requests=1)})
    dictionary = EudicDictionary(limiter, client_factory=upstream.client_factory)

    asyncio.run(dictionary.lookup("happy"))
    with pytest.raises(RateLimitError):
        asyncio.run(dictionary.lookup("happy"))

    assert upstream.hits("dict.eudic.net") == 1


def test_youdao_empty_audio_is_an_error():
    upstream = FakeUpstream()
    upstream.routes[("dict.youdao.com", "/dictvoice")] = httpx.Response(200, content=b"")
    dictionary = YoudaoDictionary(RateLimiter(), client_factory=upstream.client_factory)

    with pytest.raises(EmptyAudioError, match="empty audio"):
        asyncio.run(dictionary.fetch_audio("happy", "uk"))

    assert upstream.requests[0].url.params["type"] == "1"


def test_transport_errors_propagate():
    upstream = FakeUpstream()
    upstream.routes[("dict.eudic.net", "/dicts/MiniDictSearch2")] = httpx.Response(502, text="bad gateway")
    dictionary = EudicDictionary(RateLimiter(), client_factory=upstream.client_factory)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(dictionary.lookup("happy"))


def test_frdic_speech_uses_accent_voice():
    upstream = FakeUpstream()
    speech = FrdicSpeech(RateLimiter(), client_factory=upstream.client_factory)

    audio = asyncio.run(speech.fetch_audio("happy", "uk"))

    assert audio == b"frdic-audio"
    params = upstream.requests[0].url.params
    assert params["voicename"] == "en_uk_male"
    assert params["txt"] == "QYNaGFwcHk="


def test_download_audio_rejects_empty_body():
    upstream = FakeUpstream()
    upstream.routes[("cdn.example.com", "/a.mp3")] = httpx.Response(200, content=b"")

    with pytest.raises(EmptyAudioError):
        asyncio.run(download_audio("https://cdn.example.com/a.mp3", client_factory=upstream.client_factory))


def test_minimax_audio_decoding():
    audio = decode_minimax_audio({"base_resp": {"status_code": 0}, "data": {"audio": binascii.hexlify(b"mp3").decode()}})
    assert audio == b"mp3"

    with pytest.raises(ProviderError, match="quota"):
        decode_minimax_audio({"base_resp": {"status_code": 1008, "status_msg": "quota"}})
    with pytest.raises(EmptyPayloadError):
        decode_minimax_audio({"base_resp": {"status_code": 0}, "data": {"audio": ""}})


def test_minimax_without_key_fails_fast(monkeypatch):
    monkeypatch.delenv("MINIMAX_API_KEY", raising=False)
    speech = MiniMaxSpeech(client_factory=FakeUpstream().client_factory)
    assert not speech.available()
    with pytest.raises(ProviderError):
        asyncio.run(speech.fetch_audio("happy"))


def test_clean_ipa_strips_wrappers():
    assert clean_ipa("/ˈhæpi/") == "ˈhæpi"
    assert clean_ipa("The IPA is [kəˈmjuːnɪti].") == "kəˈmjuːnɪti"
    assert clean_ipa("  ˈhæpi \n") == "ˈhæpi"
    assert clean_ipa("") == ""


def test_llm_generate_ipa(monkeypatch):
    monkeypatch.setenv("MOONSHOT_API_KEY", "test-key")
    upstream = FakeUpstream()
    upstream.routes[("api.moonshot.cn", "/v1/chat/completions")] = httpx.Response(
        200, json={"choices": [{"message": {"content": "/ˌkuːbəˈnetiːz/"}}]}
    )
    service = LLMService(provider="kimi", client_factory=upstream.client_factory)

    assert asyncio.run(service.generate_ipa("kubernetes")) == "ˌkuːbəˈnetiːz"
    assert upstream.requests[0].headers["Authorization"] == "Bearer test-key"


def test_llm_empty_reply_raises(monkeypatch):
    monkeypatch.setenv("MOONSHOT_API_KEY", "test-key")
    upstream = FakeUpstream()
    upstream.routes[("api.moonshot.cn", "/v1/chat/completions")] = httpx.Response(
        200, json={"choices": [{"message": {"content": "  "}}]}
    )
    service = LLMService(provider="kimi", client_factory=upstream.client_factory)

    with pytest.raises(EmptyPayloadError):
        asyncio.run(service.generate_ipa("kubernetes"))


def test_llm_models_report_availability(monkeypatch):
    monkeypatch.delenv("MOONSHOT_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "x")
    service = LLMService(provider="openai")
    models = {item["id"]: item for item in service.models()}

    assert models["kimi"]["available"] is False
    assert models["openai"]["available"] is True
    with pytest.raises(ValueError):
        service.model_id("nope")
