"""Tests for the Flask host: command API, error envelope and text extraction.

Each test builds its own app around a controller on the fake scheduler, so
no real timers run and no state leaks between tests.
"""

from __future__ import annotations

import io

import pytest
from ebooklib import epub
from pypdf import PdfWriter

import speedread_web
from speedread_engine import ReaderController


@pytest.fixture
def app(scheduler):
    return speedread_web.create_app(ReaderController(scheduler=scheduler, rate=300))


@pytest.fixture
def client(app):
    return app.test_client()


def _state(response):
    data = response.get_json()
    assert data["ok"] is True
    return data["state"]


def _epub_bytes(tmp_path, body_html: str) -> bytes:
    book = epub.EpubBook()
    book.set_identifier("speedread-test")
    book.set_title("Sample")
    book.set_language("en")
    chapter = epub.EpubHtml(title="One", file_name="one.xhtml", lang="en")
    chapter.content = body_html
    book.add_item(chapter)
    book.toc = [chapter]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = ["nav", chapter]
    path = tmp_path / "sample.epub"
    epub.write_epub(str(path), book)
    return path.read_bytes()


def _blank_pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


class TestPage:
    def test_index_renders(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert b"Start Reading" in response.data

    def test_sample_text_button(self, client):
        response = client.get("/")
        assert b"Try Sample Text" in response.data
        assert b'"Rapid serial reading' in response.data

    def test_sample_text_starts_a_session(self, client):
        state = _state(client.post("/api/start", json={"text": speedread_web.SAMPLE_TEXT}))
        assert state["mode"] == "countdown"
        assert state["total"] > 50


class TestCommandApi:
    def test_initial_state_is_idle(self, client):
        state = _state(client.get("/api/state"))
        assert state["mode"] == "idle"
        assert state["total"] == 0
        assert state["rate"] == 300
        assert state["remaining_label"] == "0:00"

    def test_start_enters_countdown(self, client):
        state = _state(client.post("/api/start", json={"text": "Hello brave world."}))
        assert state["mode"] == "countdown"
        assert state["countdown"] == 3
        assert state["total"] == 3
        assert (state["before"], state["focal"], state["after"]) == ("He", "l", "lo")

    def test_blank_start_is_ignored(self, client):
        state = _state(client.post("/api/start", json={"text": "   "}))
        assert state["mode"] == "idle"

    def test_start_requires_string(self, client):
        response = client.post("/api/start", json={"text": 5})
        assert response.status_code == 400
        assert response.get_json()["ok"] is False

    def test_session_lifecycle(self, client, scheduler):
        client.post("/api/start", json={"text": "one two three"})
        assert _state(client.post("/api/skip"))["mode"] == "playing"
        scheduler.advance(200)
        state = _state(client.get("/api/state"))
        assert state["position"] == 1
        assert state["progress"] == 67
        assert _state(client.post("/api/toggle"))["mode"] == "paused"
        assert _state(client.post("/api/resume"))["mode"] == "playing"
        assert _state(client.post("/api/stop"))["mode"] == "paused"
        state = _state(client.post("/api/reset"))
        assert state["mode"] == "idle"
        assert state["total"] == 0

    def test_rate_adjustment_clamps(self, client):
        assert _state(client.post("/api/rate", json={"delta": 50}))["rate"] == 350
        assert _state(client.post("/api/rate", json={"delta": 5000}))["rate"] == 1000
        assert _state(client.post("/api/rate", json={"delta": -5000}))["rate"] == 100

    @pytest.mark.parametrize("payload", [{}, {"delta": "50"}, {"delta": True}, {"delta": 1.5}])
    def test_rate_requires_integer(self, client, payload):
        response = client.post("/api/rate", json=payload)
        assert response.status_code == 400

    def test_unknown_command(self, client):
        response = client.post("/api/rewind")
        assert response.status_code == 404
        assert "rewind" in response.get_json()["error"]

    def test_commands_without_session_are_noops(self, client):
        for command in ("toggle", "stop", "skip", "resume"):
            assert _state(client.post(f"/api/{command}"))["mode"] == "idle"


class TestExtract:
    def test_missing_file(self, client):
        response = client.post("/api/extract", data={"note": "x"}, content_type="multipart/form-data")
        assert response.status_code == 400
        assert response.get_json()["error"] == "No file uploaded"

    def test_unsupported_extension(self, client):
        data = {"file": (io.BytesIO(b"plain"), "notes.txt")}
        response = client.post("/api/extract", data=data, content_type="multipart/form-data")
        assert response.status_code == 400

    def test_epub_text_is_extracted(self, client, tmp_path):
        html = "<html><body><p>Hello brave well-known world.</p></body></html>"
        data = {"file": (io.BytesIO(_epub_bytes(tmp_path, html)), "sample.epub")}
        response = client.post("/api/extract", data=data, content_type="multipart/form-data")
        assert response.status_code == 200
        payload = response.get_json()
        assert payload["ok"] is True
        assert payload["filename"] == "sample.epub"
        assert "Hello brave well-known world." in payload["text"]
        assert "well" in payload["units"]
        assert "world." in payload["units"]

    def test_pdf_without_text_is_rejected(self, client):
        data = {"file": (io.BytesIO(_blank_pdf_bytes()), "scan.pdf")}
        response = client.post("/api/extract", data=data, content_type="multipart/form-data")
        assert response.status_code == 400
        assert response.get_json()["error"] == speedread_web.EXTRACTION_EMPTY_MSG

    def test_corrupt_epub_reports_error(self, client):
        data = {"file": (io.BytesIO(b"not a zip"), "broken.epub")}
        response = client.post("/api/extract", data=data, content_type="multipart/form-data")
        assert response.status_code == 500
        assert response.get_json()["ok"] is False


class TestHelpers:
    def test_normalize_whitespace(self):
        assert speedread_web.normalize_whitespace("a  b \r\n\n\n\n c") == "a b\n\nc"

    def test_allowed_file(self):
        assert speedread_web.allowed_file("Book.EPUB")
        assert speedread_web.allowed_file("paper.pdf")
        assert not speedread_web.allowed_file("notes.txt")

    def test_build_payload(self):
        payload = speedread_web.build_payload("Fast-paced text, here.", "x.pdf")
        assert payload["units"] == ["Fast", "paced", "text,", "here."]
        assert payload["word_count"] == 4
        assert payload["char_count"] == 22
