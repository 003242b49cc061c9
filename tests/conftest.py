from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import vocab_voice.app as app_module
from vocab_voice.pipeline.context import build_context
from vocab_voice.storage.db import Database
from vocab_voice.storage.objects import LocalAudioStorage

from fakes import FakeUpstream


@pytest.fixture()
def temp_db(tmp_path):
    db = Database(tmp_path / "vocab_voice_test.db")
    db.initialize()
    return db


@pytest.fixture()
def storage(tmp_path):
    return LocalAudioStorage(tmp_path / "audio")


@pytest.fixture()
def upstream():
    return FakeUpstream()


@pytest.fixture()
def context(temp_db, storage, upstream):
    return build_context(
        temp_db,
        storage=storage,
        client_factory=upstream.client_factory,
        tts_order=("frdic", "youdao"),
        ipa_fallback=False,
        requests_per_minute=0,
    )


@pytest.fixture()
def client(temp_db, context, monkeypatch):
    monkeypatch.setattr(app_module, "db", temp_db)
    monkeypatch.setattr(app_module, "context", context)
    with TestClient(app_module.app) as c:
        yield c
