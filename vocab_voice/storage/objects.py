from __future__ import annotations

import re
import secrets
import string
import time
from pathlib import Path

from vocab_voice.config import AUDIO_CONTENT_TYPES, AUDIO_DIR, AUDIO_PUBLIC_PREFIX, PUBLIC_BASE_URL

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def gen_audio_key(word: str, accent: str | None = None, ext: str = "mp3") -> str:
    name = re.sub(r"[^a-z0-9]", "_", str(word or "").strip().lower()) or "audio"
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    parts = [name]
    if accent:
        parts.append(accent)
    parts.extend([str(int(time.time() * 1000)), suffix])
    return "_".join(parts) + f".{ext}"


def extension_for(content_type: str | None) -> str:
    return AUDIO_CONTENT_TYPES.get(_base_type(content_type), "mp3")


def is_audio_content_type(content_type: str | None) -> bool:
    base = _base_type(content_type)
    return base in AUDIO_CONTENT_TYPES or base.startswith("audio/")


class LocalAudioStorage:
    """Object storage backed by the artifacts directory.

    Files are served by the ``/artifacts`` static mount, so the public URL is the
    mount path (optionally prefixed with ``VOCAB_VOICE_PUBLIC_BASE_URL``).
    """

    def __init__(
        self,
        root: Path = AUDIO_DIR,
        *,
        public_prefix: str = AUDIO_PUBLIC_PREFIX,
        base_url: str = PUBLIC_BASE_URL,
    ) -> None:
        self.root = root
        self.public_prefix = (base_url.rstrip("/") + "/" + public_prefix.strip("/")) if base_url else public_prefix.rstrip("/")

    def upload(self, data: bytes, key: str, content_type: str = "audio/mpeg") -> str:
        if not data:
            raise ValueError("refusing to store empty object")
        safe_key = Path(key).name
        if not safe_key or safe_key != key:
            raise ValueError(f"invalid object key: {key}")
        self.root.mkdir(parents=True, exist_ok=True)
        target = self.root / safe_key
        if target.exists():
            raise FileExistsError(f"object already exists: {key}")
        target.write_bytes(data)
        return f"{self.public_prefix}/{safe_key}"

    def owns(self, url: str | None) -> bool:
        return bool(url) and str(url).startswith(self.public_prefix + "/")


def _base_type(content_type: str | None) -> str:
    return str(content_type or "").split(";", 1)[0].strip().lower()
