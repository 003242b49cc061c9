from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from vocab_voice.api.schemas import (
    AudioGenerateRequest,
    AudioUrlUploadRequest,
    BatchUpdateRequest,
    IPARequest,
    TTSRequest,
    WordCreateRequest,
    WordImportRequest,
    WordUpdateRequest,
)
from vocab_voice.config import ARTIFACTS_DIR, configure_logging, ensure_dirs
from vocab_voice.errors import NoAudioAvailableError, ProviderError, RateLimitError
from vocab_voice.models import AUDIO_MODES, BatchOptions, normalize_word
from vocab_voice.pipeline.context import build_context
from vocab_voice.storage.db import Database

logger = logging.getLogger(__name__)

HANDLED_ERRORS = (ValueError, LookupError, ProviderError, httpx.HTTPError)
IMPORT_PHONETIC_FIELDS = ("ipa_us", "ipa_uk", "ipa", "ipa_source")

db = Database()
context = build_context(db)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    ensure_dirs()
    db.initialize()
    yield


app = FastAPI(title="Vocab Voice", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/artifacts", StaticFiles(directory=str(ARTIFACTS_DIR), check_dir=False), name="artifacts")


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/words")
def list_words(
    search: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> dict:
    rows, count = db.select_words(search=search, limit=limit, offset=offset)
    return {"ok": True, "data": rows, "count": count, "limit": limit, "offset": offset}


@app.post("/api/words")
def create_word(req: WordCreateRequest) -> dict:
    try:
        row = db.insert_word(req.model_dump())
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "data": row}


@app.put("/api/words/{word_id}")
def update_word(word_id: int, req: WordUpdateRequest) -> dict:
    try:
        row = db.update_word(word_id, req.model_dump(exclude_unset=True))
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "data": row}


@app.delete("/api/words/{word_id}")
def delete_word(word_id: int) -> dict:
    try:
        row = db.delete_word(word_id)
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "deleted": row}


@app.post("/api/words/import")
async def import_word(req: WordImportRequest) -> dict:
    token = normalize_word(req.word)
    if not token:
        raise HTTPException(status_code=400, detail="word is empty")
    accents = BatchOptions(audio_mode=req.audio_mode).accents() if req.generate_audio else []

    try:
        phonetics = await context.lookup_phonetics(token, req.provider)
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    fields = {key: getattr(phonetics, key) for key in IMPORT_PHONETIC_FIELDS if getattr(phonetics, key)}
    audio = None
    if accents:
        try:
            audio = await context.generate_audio(token, accents, existing=phonetics)
        except (NoAudioAvailableError, RateLimitError) as exc:
            logger.warning("import of %r continues without audio: %s", token, exc)
        else:
            stored = {key: value for key, value in audio.to_dict().items() if key.startswith("audio_url") and value}
            fields.update(stored)

    row = await asyncio.to_thread(db.upsert_word, req.word, fields)
    return {
        "ok": True,
        "data": row,
        "phonetics": phonetics.to_dict(),
        "audio": audio.to_dict() if audio else None,
    }


@app.get("/api/phonetics")
async def phonetics(
    word: str = Query(...),
    provider: str = Query(default="auto"),
) -> dict:
    try:
        result = await context.lookup_phonetics(word, provider)
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, **result.to_dict()}


@app.get("/api/eudic")
async def eudic(word: str = Query(...)) -> dict:
    token = normalize_word(word)
    if not token:
        raise HTTPException(status_code=400, detail="word is empty")
    try:
        parsed = await context.eudic.parse(token)
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "data": parsed.to_dict()}


@app.get("/api/ipa")
def ipa_models() -> dict:
    return {"ok": True, "default": context.llm.provider, "models": context.llm.models()}


@app.post("/api/ipa")
async def generate_ipa(req: IPARequest) -> dict:
    try:
        ipa = await context.llm.generate_ipa(req.word, provider=req.provider)
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {
        "ok": True,
        "word": normalize_word(req.word),
        "ipa": ipa,
        "provider": req.provider or context.llm.provider,
        "model": context.llm.model_id(req.provider),
    }


@app.post("/api/tts")
async def tts(req: TTSRequest) -> dict:
    try:
        provider, stored = await context.audio.synthesize(req.word, req.accent, req.provider)
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "provider": provider, "accent": req.accent, "audio_url": stored.url, "size": stored.size}


@app.post("/api/audio/generate")
async def generate_audio(req: AudioGenerateRequest) -> dict:
    existing = req.model_dump(exclude={"word", "accents"})
    try:
        result = await context.generate_audio(req.word, req.accents, existing=existing)
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, **result.to_dict()}


@app.post("/api/upload-audio")
async def upload_audio(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            try:
                req = AudioUrlUploadRequest.model_validate(await request.json())
            except ValueError as exc:
                raise HTTPException(status_code=400, detail="url is required") from exc
            stored = await context.audio.import_from_url(req.url, word=req.word)
        else:
            form = await request.form()
            upload = form.get("audio") or form.get("file")
            if upload is None or isinstance(upload, str):
                raise HTTPException(status_code=400, detail="audio file is required")
            word = form.get("word")
            stored = await asyncio.to_thread(
                context.audio.store_upload,
                await upload.read(),
                word=word if isinstance(word, str) else upload.filename,
                content_type=upload.content_type,
            )
    except HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "url": stored.url, "size": stored.size}


@app.post("/api/batch-update")
async def batch_update(req: BatchUpdateRequest, background_tasks: BackgroundTasks) -> dict:
    items: list[int | str] = [*req.word_ids, *[word for word in req.words if normalize_word(word)]]
    if not items:
        raise HTTPException(status_code=400, detail="word_ids or words is required")
    if req.audio_mode not in AUDIO_MODES:
        raise HTTPException(status_code=400, detail=f"invalid audio_mode: {req.audio_mode}")
    if req.provider != "auto" and req.provider not in context.phonetics.dictionaries:
        raise HTTPException(status_code=400, detail=f"unknown dictionary provider: {req.provider}")

    options = BatchOptions(
        update_phonetics=req.update_phonetics,
        update_audio=req.update_audio,
        audio_mode=req.audio_mode,
        provider=req.provider,
    )
    task = await asyncio.to_thread(context.batch.create_task, len(items))
    background_tasks.add_task(context.batch.process, task.id, items, options)
    return {"ok": True, "task_id": task.id, "total": len(items)}


@app.get("/api/batch-update")
def batch_status(task_id: str | None = Query(default=None), limit: int = Query(default=10, ge=1, le=100)) -> dict:
    if not task_id:
        return {"ok": True, "tasks": [task.to_dict() for task in context.batch.list_tasks(limit)]}
    task = context.get_task_status(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="task not found")
    return {"ok": True, "task": task.to_dict()}


@app.post("/api/batch-update/{task_id}/cancel")
def batch_cancel(task_id: str) -> dict:
    task = context.get_task_status(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="task not found")
    return {"ok": True, "cancelled": context.batch.cancel(task_id), "status": task.status}


@app.get("/api/rate-limit")
def rate_limit_status() -> dict:
    return {"ok": True, "providers": context.limiter.status()}


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, RateLimitError):
        return HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(exc.wait_seconds)},
        )
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc.args[0] if exc.args else "not found"))
    return HTTPException(status_code=503, detail=f"upstream unavailable: {exc}")
