from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from vocab_voice.config import IPA_FALLBACK_ENABLED, TTS_PROVIDER_ORDER
from vocab_voice.models import AudioResult, BatchOptions, BatchTask, PhoneticsResult
from vocab_voice.pipeline.audio import AudioResolver
from vocab_voice.pipeline.batch import BatchOrchestrator
from vocab_voice.pipeline.phonetics import PhoneticsResolver, ProviderRotation
from vocab_voice.pipeline.strategies import FallbackChain, Strategy
from vocab_voice.providers.eudic import EudicDictionary
from vocab_voice.providers.tts import FrdicSpeech, MiniMaxSpeech, OpenAISpeech
from vocab_voice.providers.youdao import YoudaoDictionary
from vocab_voice.services.http import ClientFactory, build_async_client
from vocab_voice.services.llm import LLMService
from vocab_voice.services.rate_limit import RateLimiter
from vocab_voice.storage.db import Database
from vocab_voice.storage.objects import LocalAudioStorage


@dataclass
class PipelineContext:
    """Process-wide pipeline state: limiter queues, rotation pointer and resolvers."""

    limiter: RateLimiter
    rotation: ProviderRotation
    llm: LLMService
    youdao: YoudaoDictionary
    eudic: EudicDictionary
    storage: LocalAudioStorage
    phonetics: PhoneticsResolver
    audio: AudioResolver
    batch: BatchOrchestrator

    async def lookup_phonetics(self, word: str, provider: str = "auto") -> PhoneticsResult:
        return await self.phonetics.lookup(word, provider)

    async def generate_audio(
        self,
        word: str,
        accents: Iterable[str],
        existing: PhoneticsResult | dict | None = None,
    ) -> AudioResult:
        return await self.audio.generate_audio(word, accents, existing)

    async def run_batch(self, items: Sequence[int | str], options: BatchOptions | None = None) -> BatchTask:
        return await self.batch.run_batch(items, options)

    def get_task_status(self, task_id: str) -> BatchTask | None:
        return self.batch.get_task_status(task_id)


def build_context(
    db: Database,
    *,
    storage: LocalAudioStorage | None = None,
    limiter: RateLimiter | None = None,
    llm: LLMService | None = None,
    client_factory: ClientFactory = build_async_client,
    tts_order: Sequence[str] = TTS_PROVIDER_ORDER,
    ipa_fallback: bool = IPA_FALLBACK_ENABLED,
    requests_per_minute: int | None = None,
) -> PipelineContext:
    limiter = limiter or RateLimiter()
    storage = storage or LocalAudioStorage()
    llm = llm or LLMService(client_factory=client_factory)
    youdao = YoudaoDictionary(limiter, client_factory=client_factory)
    eudic = EudicDictionary(limiter, client_factory=client_factory)
    rotation = ProviderRotation((youdao.name, eudic.name))

    ipa_generators = None
    if ipa_fallback:
        ipa_generators = FallbackChain([Strategy("llm", llm.generate_ipa)], label="ipa")
    phonetics = PhoneticsResolver(
        {youdao.name: youdao, eudic.name: eudic},
        rotation=rotation,
        ipa_generators=ipa_generators,
    )

    speech = {
        "frdic": FrdicSpeech(limiter, client_factory=client_factory),
        "minimax": MiniMaxSpeech(client_factory=client_factory),
        "youdao": youdao,
        "openai": OpenAISpeech(client_factory=client_factory),
    }
    unknown = [name for name in tts_order if name not in speech]
    if unknown:
        raise ValueError(f"unknown tts providers: {', '.join(unknown)}")
    audio = AudioResolver(
        phonetics,
        storage,
        tts_providers=[speech[name] for name in tts_order],
        client_factory=client_factory,
    )

    batch_kwargs = {} if requests_per_minute is None else {"requests_per_minute": requests_per_minute}
    batch = BatchOrchestrator(db, phonetics, audio, **batch_kwargs)
    return PipelineContext(
        limiter=limiter,
        rotation=rotation,
        llm=llm,
        youdao=youdao,
        eudic=eudic,
        storage=storage,
        phonetics=phonetics,
        audio=audio,
        batch=batch,
    )
