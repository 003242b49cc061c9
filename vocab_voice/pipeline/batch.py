from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence, TypeVar

from vocab_voice.config import BATCH_RATE_LIMIT_RETRIES, BATCH_REQUESTS_PER_MINUTE
from vocab_voice.errors import RateLimitError
from vocab_voice.models import (
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_PROCESSING,
    BatchOptions,
    BatchTask,
    PhoneticsResult,
)
from vocab_voice.pipeline.audio import AudioResolver
from vocab_voice.pipeline.phonetics import PhoneticsResolver
from vocab_voice.storage.db import Database

logger = logging.getLogger(__name__)

UTC = timezone.utc
T = TypeVar("T")

AUDIO_FIELDS = {"us": "audio_url_us", "uk": "audio_url_uk"}
IPA_FIELDS = ("ipa_us", "ipa_uk", "ipa")


class BatchOrchestrator:
    """Refreshes phonetics and audio for many words, one word at a time.

    Progress counters are written after every word so pollers see live
    numbers. A failing word is counted and skipped; only a failure outside the
    per-word loop marks the whole task ``failed``.
    """

    def __init__(
        self,
        db: Database,
        phonetics: PhoneticsResolver,
        audio: AudioResolver,
        *,
        requests_per_minute: int = BATCH_REQUESTS_PER_MINUTE,
        rate_limit_retries: int = BATCH_RATE_LIMIT_RETRIES,
        failure_ratio_threshold: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.phonetics = phonetics
        self.audio = audio
        self.delay_seconds = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0
        self.rate_limit_retries = max(0, int(rate_limit_retries))
        self.failure_ratio_threshold = failure_ratio_threshold
        self.sleep = sleep
        self._cancelled: set[str] = set()

    def create_task(self, total: int) -> BatchTask:
        row = self.db.insert_task(
            {
                "status": TASK_PROCESSING,
                "total_words": int(total),
                "processed_words": 0,
                "failed_words": 0,
                "started_at": _iso_now(),
            }
        )
        return BatchTask.from_row(row)

    async def run_batch(self, items: Sequence[int | str], options: BatchOptions | None = None) -> BatchTask:
        task = self.create_task(len(items))
        return await self.process(task.id, items, options or BatchOptions())

    def get_task_status(self, task_id: str) -> BatchTask | None:
        row = self.db.get_task(task_id)
        return BatchTask.from_row(row) if row else None

    def list_tasks(self, limit: int = 10) -> list[BatchTask]:
        return [BatchTask.from_row(row) for row in self.db.list_tasks(limit)]

    def cancel(self, task_id: str) -> bool:
        task = self.get_task_status(task_id)
        if task is None or task.finished:
            return False
        self._cancelled.add(task_id)
        return True

    async def process(self, task_id: str, items: Sequence[int | str], options: BatchOptions) -> BatchTask:
        processed = 0
        failed = 0
        accents = options.accents()
        logger.info("[batch %s] starting %d words, audio_mode=%s", task_id, len(items), options.audio_mode)
        try:
            ids = [item for item in items if isinstance(item, int)]
            rows = {int(row["id"]): row for row in await asyncio.to_thread(self.db.find_words_by_ids, ids)}
            for index, item in enumerate(items):
                if task_id in self._cancelled:
                    logger.info("[batch %s] cancelled after %d words", task_id, index)
                    return await self._finalize(task_id, TASK_FAILED, processed, failed, error="cancelled")

                try:
                    await self._process_item(item, options, accents, rows)
                    processed += 1
                except Exception:
                    failed += 1
                    logger.exception("[batch %s] error processing %r", task_id, item)

                await asyncio.to_thread(
                    self.db.update_task, task_id, {"processed_words": processed, "failed_words": failed}
                )
                if self.delay_seconds and index < len(items) - 1:
                    await self.sleep(self.delay_seconds)
        except Exception as exc:
            logger.exception("[batch %s] aborted", task_id)
            return await self._finalize(task_id, TASK_FAILED, processed, failed, error=str(exc) or type(exc).__name__)

        status, error = TASK_COMPLETED, None
        total = len(items)
        if self.failure_ratio_threshold is not None and total and failed / total > self.failure_ratio_threshold:
            status, error = TASK_FAILED, f"{failed} of {total} words failed"
        return await self._finalize(task_id, status, processed, failed, error=error)

    async def _process_item(
        self, item: int | str, options: BatchOptions, accents: list[str], rows: dict[int, dict]
    ) -> None:
        row = await self._load_row(item, rows)
        word = str(row["normalized"])
        updates: dict[str, object] = {}
        phonetics: PhoneticsResult | None = None

        if options.update_phonetics:
            if row.get("ipa_us") and row.get("ipa_uk"):
                logger.debug("cache hit for %r", word)
            else:
                phonetics = await self._retry_rate_limited(lambda: self.phonetics.lookup(word, options.provider))
                for field in IPA_FIELDS:
                    value = getattr(phonetics, field)
                    if value:
                        updates[field] = value
                if updates and phonetics.ipa_source:
                    updates["ipa_source"] = phonetics.ipa_source

        audio_error: Exception | None = None
        missing = [accent for accent in accents if not row.get(AUDIO_FIELDS[accent])]
        if options.update_audio and missing:
            try:
                audio = await self._retry_rate_limited(
                    lambda: self.audio.generate_audio(word, missing, existing=phonetics)
                )
            except Exception as exc:
                audio_error = exc
            else:
                for accent in missing:
                    url = getattr(audio, AUDIO_FIELDS[accent])
                    if url:
                        updates[AUDIO_FIELDS[accent]] = url

        if updates:
            await asyncio.to_thread(self.db.update_word, int(row["id"]), updates)
            logger.info("updated %r: %s", word, ", ".join(sorted(updates)))
        if audio_error is not None:
            raise audio_error

    async def _load_row(self, item: int | str, rows: dict[int, dict]) -> dict:
        if isinstance(item, int):
            row = rows.get(item)
            if row is None:
                raise LookupError(f"word {item} not found")
            return row
        return await asyncio.to_thread(self.db.upsert_word, str(item))

    async def _retry_rate_limited(self, call: Callable[[], Awaitable[T]]) -> T:
        attempts = 0
        while True:
            try:
                return await call()
            except RateLimitError as exc:
                if attempts >= self.rate_limit_retries:
                    raise
                attempts += 1
                logger.info("%s, waiting before retry %d", exc, attempts)
                await self.sleep(exc.wait_seconds)

    async def _finalize(self, task_id: str, status: str, processed: int, failed: int, *, error: str | None) -> BatchTask:
        self._cancelled.discard(task_id)
        row = await asyncio.to_thread(
            self.db.update_task,
            task_id,
            {
                "status": status,
                "processed_words": processed,
                "failed_words": failed,
                "completed_at": _iso_now(),
                "error_message": error,
            },
        )
        logger.info("[batch %s] %s: processed=%d failed=%d", task_id, status, processed, failed)
        return BatchTask.from_row(row)


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()
