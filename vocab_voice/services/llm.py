from __future__ import annotations

import logging
import os
import re

from vocab_voice.errors import EmptyPayloadError, ProviderError
from vocab_voice.services.http import ClientFactory, build_async_client

logger = logging.getLogger(__name__)

LLM_MODELS = {
    "kimi": {
        "id": "kimi-k2-turbo-preview",
        "provider": "moonshot",
        "name": "Kimi (Moonshot)",
        "base_url_env": "MOONSHOT_BASE_URL",
        "base_url": "https://api.moonshot.cn/v1",
        "api_key_env": "MOONSHOT_API_KEY",
        "system_prompt": (
            "你擅长提供技术词汇的 IPA 国际音标。"
            "对于给定的词汇，只返回 IPA 音标，不要有其他解释。"
        ),
    },
    "minimax": {
        "id": "MiniMax-M2.1",
        "provider": "minimax",
        "name": "MiniMax",
        "base_url_env": "MINIMAX_BASE_URL",
        "base_url": "https://api.minimaxi.com/v1",
        "api_key_env": "MINIMAX_API_KEY",
        "system_prompt": (
            "You provide IPA (International Phonetic Alphabet) transcriptions for technical terms. "
            "For the given word, return only the IPA transcription, no other explanations."
        ),
    },
    "openai": {
        "id": "gpt-4o-mini",
        "provider": "openai",
        "name": "OpenAI",
        "base_url_env": "VOCAB_VOICE_OPENAI_BASE_URL",
        "base_url": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
        "system_prompt": (
            "You provide IPA transcriptions for English words. "
            "Return only the transcription, without slashes or explanations."
        ),
    },
}
DEFAULT_LLM_PROVIDER = "kimi"


class LLMService:
    def __init__(
        self,
        *,
        provider: str | None = None,
        model_override: str | None = None,
        client_factory: ClientFactory = build_async_client,
    ) -> None:
        selected = (provider or os.getenv("VOCAB_VOICE_LLM_PROVIDER", DEFAULT_LLM_PROVIDER)).strip().lower()
        self.provider = selected if selected in LLM_MODELS else DEFAULT_LLM_PROVIDER
        self.client_factory = client_factory
        self.model_override = str(model_override).strip() if model_override else os.getenv("VOCAB_VOICE_LLM_MODEL")

    def available(self, provider: str | None = None) -> bool:
        config = LLM_MODELS[self._resolve(provider)]
        return bool(os.getenv(config["api_key_env"]))

    def models(self) -> list[dict]:
        return [
            {
                "id": key,
                "name": config["name"],
                "model_id": config["id"],
                "provider": config["provider"],
                "available": self.available(key),
            }
            for key, config in LLM_MODELS.items()
        ]

    def model_id(self, provider: str | None = None) -> str:
        key = self._resolve(provider)
        if self.model_override and key == self.provider:
            return self.model_override
        return LLM_MODELS[key]["id"]

    async def generate_ipa(self, word: str, *, provider: str | None = None) -> str:
        key = self._resolve(provider)
        config = LLM_MODELS[key]
        token = word.strip()
        if not token:
            raise ValueError("word is empty")

        logger.info("generating IPA with %s for %s", config["name"], token)
        payload = {
            "model": self.model_id(key),
            "messages": [
                {"role": "system", "content": config["system_prompt"]},
                {"role": "user", "content": token},
            ],
            "temperature": 0.3,
        }
        data = await self._chat_completion(payload, provider=key)
        ipa = clean_ipa(_extract_content(data))
        if not ipa:
            raise EmptyPayloadError(f"no IPA content in response from {config['name']}")
        return ipa

    async def _chat_completion(self, payload: dict, *, provider: str, timeout: int = 40) -> dict:
        config = LLM_MODELS[provider]
        api_key = os.getenv(config["api_key_env"])
        if not api_key:
            raise ProviderError(f"missing llm api key ({config['api_key_env']})")

        base_url = os.getenv(config["base_url_env"]) or config["base_url"]
        url = base_url.rstrip("/") + "/chat/completions"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        async with self.client_factory() as client:
            resp = await client.post(url, headers=headers, json=payload, timeout=timeout)
            resp.raise_for_status()
            return resp.json()

    def _resolve(self, provider: str | None) -> str:
        key = str(provider or self.provider).strip().lower()
        if key not in LLM_MODELS:
            raise ValueError(f"unknown llm provider: {provider}")
        return key


def clean_ipa(text: str) -> str:
    """Reduce a model reply to one bare transcription."""

    value = " ".join(str(text or "").split()).strip()
    if not value:
        return ""
    match = re.search(r"[/\[]([^/\[\]]+)[/\]]", value)
    if match:
        value = match.group(1)
    return value.strip().strip("/").strip()


def _extract_content(payload: dict) -> str:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices:
        return ""
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = [str(item.get("text") or "") for item in content if isinstance(item, dict)]
        return "".join(parts).strip()
    return ""
