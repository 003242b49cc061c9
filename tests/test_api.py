from __future__ import annotations

import httpx


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_word_crud_flow(client):
    created = client.post("/api/words", json={"word": "Happy", "ipa_us": "ˈhæpi"})
    assert created.status_code == 200
    word = created.json()["data"]
    assert word["normalized"] == "happy"

    duplicate = client.post("/api/words", json={"word": "happy"})
    assert duplicate.status_code == 400

    listing = client.get("/api/words", params={"search": "hap"})
    assert listing.json()["count"] == 1

    updated = client.put(f"/api/words/{word['id']}", json={"ipa_uk": "ˈhæpɪ"})
    assert updated.status_code == 200
    assert updated.json()["data"]["ipa_uk"] == "ˈhæpɪ"
    assert updated.json()["data"]["ipa_us"] == "ˈhæpi"

    assert client.put("/api/words/9999", json={"ipa_uk": "x"}).status_code == 404
    assert client.delete(f"/api/words/{word['id']}").status_code == 200
    assert client.delete(f"/api/words/{word['id']}").status_code == 404


def test_phonetics_lookup(client):
    resp = client.get("/api/phonetics", params={"word": "happy", "provider": "youdao"})
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ipa_us"] == "ˈhæpi"
    assert payload["ipa_source"] == "dict"
    assert payload["provider"] == "youdao"


def test_phonetics_invalid_provider(client):
    resp = client.get("/api/phonetics", params={"word": "happy", "provider": "bing"})
    assert resp.status_code == 400


def test_phonetics_rate_limit_returns_retry_after(client):
    for _ in range(5):
        assert client.get("/api/phonetics", params={"word": "happy", "provider": "youdao"}).status_code == 200

    blocked = client.get("/api/phonetics", params={"word": "happy", "provider": "youdao"})

    assert blocked.status_code == 429
    assert int(blocked.headers["retry-after"]) > 0
    status = client.get("/api/rate-limit").json()["providers"]
    assert status["youdao"]["remaining"] == 0


def test_upstream_failure_maps_to_503(client, upstream):
    upstream.routes[("dict.youdao.com", "/jsonapi_s")] = httpx.Response(500, text="oops")
    resp = client.get("/api/phonetics", params={"word": "happy", "provider": "youdao"})
    assert resp.status_code == 503


def test_eudic_raw_parse(client):
    resp = client.get("/api/eudic", params={"word": "happy"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["ipa_uk"] == "ˈhæpi"
    assert data["voice_us"]["voicename"] == "en_us_female"


def test_audio_generate_downloads_dictionary_clips(client, upstream):
    resp = client.post("/api/audio/generate", json={"word": "happy", "accents": ["us", "uk"]})

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["mode"] == "both"
    assert payload["audio_url_us"].startswith("/artifacts/audio/happy_us_")
    assert upstream.hits("api.frdic.com") == 0


def test_audio_generate_rate_limited_returns_retry_after(client, context, upstream):
    for provider in ("youdao", "frdic"):
        while context.limiter.check(provider).allowed:
            pass

    resp = client.post("/api/audio/generate", json={"word": "kubectl", "accents": ["us"]})

    assert resp.status_code == 429
    assert int(resp.headers["retry-after"]) > 0
    assert upstream.requests == []


def test_tts_endpoint(client):
    resp = client.post("/api/tts", json={"word": "kubectl", "accent": "uk"})
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["provider"] == "frdic"
    assert payload["audio_url"].startswith("/artifacts/audio/kubectl_uk_")


def test_upload_audio_file(client):
    resp = client.post(
        "/api/upload-audio",
        files={"audio": ("happy.mp3", b"ID3audio", "audio/mpeg")},
        data={"word": "happy"},
    )
    assert resp.status_code == 200
    assert resp.json()["url"].startswith("/artifacts/audio/happy_")

    rejected = client.post("/api/upload-audio", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert rejected.status_code == 400


def test_upload_audio_accepts_file_field(client):
    resp = client.post("/api/upload-audio", files={"file": ("happy.wav", b"RIFF", "audio/wav")})
    assert resp.status_code == 200
    assert resp.json()["url"].endswith(".wav")

    missing = client.post("/api/upload-audio", data={"word": "happy"})
    assert missing.status_code == 400


def test_upload_audio_from_url(client, upstream):
    upstream.routes[("cdn.example.com", "/happy.ogg")] = httpx.Response(
        200, content=b"OggS", headers={"content-type": "audio/ogg"}
    )
    resp = client.post("/api/upload-audio", json={"url": "https://cdn.example.com/happy.ogg", "word": "happy"})
    assert resp.status_code == 200
    assert resp.json()["url"].endswith(".ogg")

    assert client.post("/api/upload-audio", json={"url": "ftp://x/y"}).status_code == 400


def test_import_word_stores_phonetics_and_audio(client):
    resp = client.post("/api/words/import", json={"word": "Happy", "provider": "youdao", "audio_mode": "us"})

    assert resp.status_code == 200
    row = resp.json()["data"]
    assert row["ipa_us"] == "ˈhæpi"
    assert row["ipa_source"] == "dict"
    assert row["audio_url_us"].startswith("/artifacts/audio/happy_us_")
    assert row["audio_url_uk"] is None


def test_import_word_without_audio_when_rate_limited(client, context, upstream):
    upstream.routes[("dict.eudic.net", "/dicts/MiniDictSearch2")] = httpx.Response(
        200, text='<span class="Phonitic">/ˈhæpi/</span><span class="Phonitic">/ˈhæpɪ/</span>'
    )
    for provider in ("youdao", "frdic"):
        while context.limiter.check(provider).allowed:
            pass

    resp = client.post("/api/words/import", json={"word": "happy", "provider": "eudic", "audio_mode": "us"})

    assert resp.status_code == 200
    assert resp.json()["audio"] is None
    assert resp.json()["data"]["ipa_uk"] == "ˈhæpi"


def test_ipa_models(client):
    payload = client.get("/api/ipa").json()
    assert {item["id"] for item in payload["models"]} == {"kimi", "minimax", "openai"}


def test_batch_update_runs_and_reports_progress(client, temp_db):
    temp_db.insert_word({"word": "happy"})
    word_id = temp_db.get_word_by_normalized("happy")["id"]

    started = client.post("/api/batch-update", json={"word_ids": [word_id], "words": ["tomato"]})
    assert started.status_code == 200
    task_id = started.json()["task_id"]
    assert started.json()["total"] == 2

    status = client.get("/api/batch-update", params={"task_id": task_id})
    task = status.json()["task"]
    assert task["status"] == "completed"
    assert task["processed_words"] == 2
    assert task["failed_words"] == 0
    assert temp_db.get_word(word_id)["ipa_uk"] == "ˈhæpi"

    tasks = client.get("/api/batch-update").json()["tasks"]
    assert [item["id"] for item in tasks] == [task_id]
    assert client.post(f"/api/batch-update/{task_id}/cancel").json()["cancelled"] is False


def test_batch_update_validation(client):
    assert client.post("/api/batch-update", json={}).status_code == 400
    assert client.post("/api/batch-update", json={"words": ["a"], "audio_mode": "au"}).status_code == 400
    assert client.post("/api/batch-update", json={"words": ["a"], "provider": "bing"}).status_code == 400
    assert client.get("/api/batch-update", params={"task_id": "missing"}).status_code == 404
    assert client.post("/api/batch-update/missing/cancel").status_code == 404
