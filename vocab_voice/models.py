from __future__ import annotations

from dataclasses import asdict, dataclass

ACCENTS = ("us", "uk", "common")
DICT_PROVIDERS = ("youdao", "eudic")
AUDIO_MODES = ("both", "us", "uk")

IPA_SOURCE_DICT = "dict"
IPA_SOURCE_LLM = "llm"

TASK_PENDING = "pending"
TASK_PROCESSING = "processing"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"
TERMINAL_TASK_STATUSES = {TASK_COMPLETED, TASK_FAILED}


@dataclass
class PhoneticsResult:
    word: str
    ipa_us: str | None = None
    ipa_uk: str | None = None
    ipa: str | None = None
    audio_url_us: str | None = None
    audio_url_uk: str | None = None
    audio_url: str | None = None
    provider: str | None = None
    ipa_source: str | None = None

    def has_ipa(self) -> bool:
        return bool(self.ipa_us or self.ipa_uk or self.ipa)

    def audio_candidate(self, accent: str) -> str | None:
        # Dedicated accent audio first, then the provider's common clip.
        if accent == "us":
            return self.audio_url_us or self.audio_url
        if accent == "uk":
            return self.audio_url_uk or self.audio_url
        return self.audio_url

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_mapping(cls, word: str, data: dict | None) -> PhoneticsResult:
        data = data or {}
        return cls(
            word=str(data.get("word") or word).strip().lower(),
            ipa_us=_clean(data.get("ipa_us")),
            ipa_uk=_clean(data.get("ipa_uk")),
            ipa=_clean(data.get("ipa")),
            audio_url_us=_clean(data.get("audio_url_us")),
            audio_url_uk=_clean(data.get("audio_url_uk")),
            audio_url=_clean(data.get("audio_url")),
            provider=_clean(data.get("provider")),
            ipa_source=_clean(data.get("ipa_source")),
        )


@dataclass
class StoredAudio:
    accent: str
    url: str
    size: int | None = None


@dataclass
class AudioResult:
    audio_url_us: str | None = None
    audio_url_uk: str | None = None
    audio_url: str | None = None
    audio_size_us: int | None = None
    audio_size_uk: int | None = None
    audio_size: int | None = None
    mode: str = "none"

    def apply(self, stored: StoredAudio) -> None:
        if stored.accent == "us":
            self.audio_url_us, self.audio_size_us = stored.url, stored.size
        elif stored.accent == "uk":
            self.audio_url_uk, self.audio_size_uk = stored.url, stored.size
        else:
            self.audio_url, self.audio_size = stored.url, stored.size
        self.mode = self._derive_mode()

    def _derive_mode(self) -> str:
        if self.audio_url_us and self.audio_url_uk:
            return "both"
        if self.audio_url_us or self.audio_url_uk or self.audio_url:
            return "single"
        return "none"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BatchOptions:
    update_phonetics: bool = True
    update_audio: bool = False
    audio_mode: str = "both"
    provider: str = "eudic"

    def accents(self) -> list[str]:
        mode = self.audio_mode.strip().lower()
        accents: list[str] = []
        if mode in {"both", "us"}:
            accents.append("us")
        if mode in {"both", "uk"}:
            accents.append("uk")
        return accents


@dataclass
class BatchTask:
    id: str
    status: str
    total_words: int = 0
    processed_words: int = 0
    failed_words: int = 0
    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None
    created_at: str | None = None

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    @classmethod
    def from_row(cls, row: dict) -> BatchTask:
        return cls(
            id=str(row["id"]),
            status=str(row["status"]),
            total_words=int(row.get("total_words") or 0),
            processed_words=int(row.get("processed_words") or 0),
            failed_words=int(row.get("failed_words") or 0),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            error_message=row.get("error_message"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_word(word: str) -> str:
    return " ".join(str(word or "").split()).strip().lower()


def _clean(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
