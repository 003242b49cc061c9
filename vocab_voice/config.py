from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
AUDIO_DIR = ARTIFACTS_DIR / "audio"
DB_PATH = PROJECT_ROOT / "vocab_voice.db"

AUDIO_PUBLIC_PREFIX = "/artifacts/audio"
PUBLIC_BASE_URL = os.getenv("VOCAB_VOICE_PUBLIC_BASE_URL", "").rstrip("/")

HTTP_TIMEOUT_SECONDS = float(os.getenv("VOCAB_VOICE_HTTP_TIMEOUT", "20"))
USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"

BATCH_REQUESTS_PER_MINUTE = int(os.getenv("VOCAB_VOICE_BATCH_RPM", "20"))
BATCH_RATE_LIMIT_RETRIES = int(os.getenv("VOCAB_VOICE_BATCH_RATE_LIMIT_RETRIES", "2"))

TTS_PROVIDER_ORDER = tuple(
    name.strip().lower()
    for name in os.getenv("VOCAB_VOICE_TTS_ORDER", "frdic,minimax,youdao").split(",")
    if name.strip()
)
IPA_FALLBACK_ENABLED = os.getenv("VOCAB_VOICE_IPA_FALLBACK", "1").strip().lower() not in {"0", "false", "no"}

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
AUDIO_CONTENT_TYPES = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "mp4",
    "audio/aac": "aac",
}


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 5
    window_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got {self.max_requests}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds}")


DEFAULT_RATE_LIMIT = RateLimitConfig()
DEFAULT_RATE_LIMITS = {
    "youdao": RateLimitConfig(max_requests=5, window_seconds=60.0),
    "eudic": RateLimitConfig(max_requests=5, window_seconds=60.0),
    "frdic": RateLimitConfig(max_requests=10, window_seconds=60.0),
}


def ensure_dirs() -> None:
    for path in [ARTIFACTS_DIR, AUDIO_DIR]:
        path.mkdir(parents=True, exist_ok=True)


def configure_logging() -> None:
    level = os.getenv("VOCAB_VOICE_LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
