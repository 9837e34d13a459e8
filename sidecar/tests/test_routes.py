"""Tests for the HTTP API."""

import json

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from api import routes
from api.rate_limit import limiter
from main import create_app, scrub_event, scrub_phi
from usg.fields import ReportVariant, canonical_keys

MOCK_MODEL_OUTPUT = json.dumps({
    "template_id": "USG_ABDOMEN_MALE",
    "patient_gender": "male",
    "fields": {key: "" for key in canonical_keys(ReportVariant.WHOLE_ABDOMEN)},
    "flags": [],
    "extraction_confidence": 0.95,
})


def _make_transport(*responses):
    queue = list(responses)
    calls = []

    async def transport(system_prompt, user_prompt, audio=None):
        calls.append((system_prompt, user_prompt, audio))
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    transport.calls = calls
    return transport


@pytest.fixture
def client():
    limiter.enabled = False
    return TestClient(create_app())


@pytest.fixture
def no_credentials(monkeypatch):
    def _raise():
        raise HTTPException(status_code=500, detail="GEMINI_API_KEY is not configured.")

    monkeypatch.setattr(routes, "_build_transport", _raise)


class TestHealthAndTemplates:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "provider": routes.LLM_PROVIDER}

    def test_responses_not_cached(self, client):
        response = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert response.headers["Cache-Control"].startswith("no-store")
        assert response.headers["access-control-allow-origin"] in ("*", "http://localhost:5173")

    def test_templates(self, client):
        data = client.get("/templates").json()
        assert data["total"] == len(data["templates"])
        by_id = {t["id"]: t for t in data["templates"]}
        assert by_id["USG_ABDOMEN_MALE"]["structured"] is True
        assert by_id["USG_ABDOMEN_MALE"]["variant"] == "whole_abdomen"
        assert by_id["USG_ABDOMEN_MALE"]["gender"] == "male"
        assert by_id["CT_HEAD"]["structured"] is False


class TestGenerateFromText:
    def test_structured_report(self, client, no_credentials):
        response = client.post(
            "/generate/from-text",
            json={"template_id": "USG_ABDOMEN_MALE", "raw_text": MOCK_MODEL_OUTPUT},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["template_id"] == "USG_ABDOMEN_MALE"
        assert "SONOGRAPHY WHOLE ABDOMEN" in data["observations"]
        assert data["flags"] == []
        assert data["debug"] is None

    def test_unknown_template(self, client, no_credentials):
        response = client.post("/generate/from-text", json={"template_id": "NOPE", "raw_text": "{}"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Unknown template_id."

    def test_unparseable_output(self, client, no_credentials):
        response = client.post(
            "/generate/from-text",
            json={"template_id": "CT_HEAD", "raw_text": "not json at all"},
        )
        assert response.status_code == 502
        assert response.json()["detail"] == "Model returned invalid JSON."

    def test_request_gender(self, client, no_credentials):
        response = client.post(
            "/generate/from-text",
            json={"template_id": "USG_KUB_MALE", "raw_text": '{"fields": {}}', "gender": "female"},
        )
        assert response.status_code == 200
        assert "GENDER: Female" in response.json()["observations"]


class TestGenerateFromAudio:
    def test_requires_template(self, client):
        response = client.post("/generate", data={"template_id": ""})
        assert response.status_code == 400
        assert response.json()["detail"] == "template_id is required."

    def test_requires_audio(self, client):
        response = client.post("/generate", data={"template_id": "USG_ABDOMEN_MALE"})
        assert response.status_code == 400
        assert response.json()["detail"] == "audio_file is required."

    def test_rejects_non_audio(self, client):
        response = client.post(
            "/generate",
            data={"template_id": "USG_ABDOMEN_MALE"},
            files={"audio_file": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400

    def test_rejects_oversize(self, client, monkeypatch):
        monkeypatch.setattr(routes, "MAX_AUDIO_BYTES", 4)
        response = client.post(
            "/generate",
            data={"template_id": "USG_ABDOMEN_MALE"},
            files={"audio_file": ("dictation.wav", b"0123456789", "audio/wav")},
        )
        assert response.status_code == 413

    def test_generates_report(self, client, monkeypatch):
        transport = _make_transport(MOCK_MODEL_OUTPUT)
        monkeypatch.setattr(routes, "_build_transport", lambda: transport)
        response = client.post(
            "/generate",
            data={"template_id": "USG_ABDOMEN_MALE", "gender": "male"},
            files={"audio_file": ("dictation.webm", b"webm-bytes", "video/webm")},
        )
        assert response.status_code == 200
        assert "SONOGRAPHY WHOLE ABDOMEN" in response.json()["observations"]
        audio = transport.calls[0][2]
        assert audio.mime_type == "audio/webm"
        assert audio.data == b"webm-bytes"

    def test_model_failure_is_502(self, client, monkeypatch):
        transport = _make_transport(RuntimeError("upstream down"))
        monkeypatch.setattr(routes, "_build_transport", lambda: transport)
        response = client.post(
            "/generate",
            data={"template_id": "USG_ABDOMEN_MALE"},
            files={"audio_file": ("dictation.mp3", b"mp3-bytes", "audio/mpeg")},
        )
        assert response.status_code == 502
        assert response.json()["detail"] == "Model request failed. Please try again."


class TestAudioMimeType:
    def test_aliases_and_parameters(self):
        assert routes.normalize_audio_mime_type("audio/webm;codecs=opus", None) == "audio/webm"
        assert routes.normalize_audio_mime_type("audio/x-m4a", "a.m4a") == "audio/mp4"

    def test_extension_fallback(self):
        assert routes.normalize_audio_mime_type("application/octet-stream", "visit.M4A") == "audio/mp4"
        assert routes.normalize_audio_mime_type(None, "visit.ogg") == "audio/ogg"
        assert routes.normalize_audio_mime_type("", "notes.txt") == ""


class TestSentryScrubbing:
    def test_redacts_exception_and_breadcrumbs(self):
        event = {
            "exception": {"values": [{"value": "bad row patient_name: Jane Roe on 12/03/2024"}]},
            "breadcrumbs": {"values": [{"message": "mail jane@example.com"}, {"category": "http"}]},
            "request": {"url": "/generate", "data": {"raw_text": "..."}},
        }
        scrubbed = scrub_event(event, None)
        value = scrubbed["exception"]["values"][0]["value"]
        assert "Jane Roe" not in value
        assert "12/03/2024" not in value
        assert scrubbed["breadcrumbs"]["values"][0]["message"] == "mail [REDACTED]"
        assert "data" not in scrubbed["request"]

    def test_plain_text_untouched(self):
        assert scrub_phi("Liver is normal in size.") == "Liver is normal in size."
