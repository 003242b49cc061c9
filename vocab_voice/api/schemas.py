from __future__ import annotations

from pydantic import BaseModel, Field


class WordCreateRequest(BaseModel):
    word: str
    ipa_us: str | None = None
    ipa_uk: str | None = None
    ipa: str | None = None
    audio_url_us: str | None = None
    audio_url_uk: str | None = None
    audio_url: str | None = None
    ipa_source: str | None = None


class WordUpdateRequest(BaseModel):
    word: str | None = None
    ipa_us: str | None = None
    ipa_uk: str | None = None
    ipa: str | None = None
    audio_url_us: str | None = None
    audio_url_uk: str | None = None
    audio_url: str | None = None
    ipa_source: str | None = None


class WordImportRequest(BaseModel):
    word: str
    provider: str = Field(default="auto")
    audio_mode: str = Field(default="both")
    generate_audio: bool = True


class IPARequest(BaseModel):
    word: str
    provider: str | None = None


class TTSRequest(BaseModel):
    word: str
    accent: str = Field(default="us")
    provider: str | None = None


class AudioGenerateRequest(BaseModel):
    word: str
    accents: list[str] = Field(default_factory=lambda: ["us", "uk"])
    ipa_us: str | None = None
    ipa_uk: str | None = None
    ipa: str | None = None
    audio_url_us: str | None = None
    audio_url_uk: str | None = None
    audio_url: str | None = None


class AudioUrlUploadRequest(BaseModel):
    url: str
    word: str | None = None


class BatchUpdateRequest(BaseModel):
    word_ids: list[int] = Field(default_factory=list)
    words: list[str] = Field(default_factory=list)
    update_phonetics: bool = True
    update_audio: bool = False
    audio_mode: str = Field(default="both")
    provider: str = Field(default="eudic")
