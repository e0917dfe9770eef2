#!/usr/bin/env python3
"""
speedread_web.py

Local web app (Flask) hosting the RSVP/ORP reading engine.

Features:
- Paste text, or upload a PDF/EPUB and extract its text (read-only)
- One word at a time with the ORP letter anchored at a fixed column
- 3-second countdown before playback (space or a click skips it)
- "Try Sample Text" button for a quick start
- Play/pause, stop, reset, WPM adjustment (left/right arrows, 50 WPM steps)
- Progress and remaining reading time
- All pacing, splitting and state live in speedread_engine; this module only
  forwards commands and renders the engine's snapshot
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional

from bs4 import BeautifulSoup
from ebooklib import epub
from flask import Flask, current_app, jsonify, render_template_string, request
from pypdf import PdfReader

import speedread_config as config
from speedread_engine import (
    MAX_RATE,
    MIN_RATE,
    RATE_STEP,
    Mode,
    ReaderController,
    Snapshot,
    tokenize,
)

logger = logging.getLogger(__name__)


# ============================================================
# Function List (explicit to help preserve all functions)
# ============================================================
# normalize_whitespace
# extract_text_from_pdf
# extract_text_from_epub
# extract_text_from_file
# allowed_file
# build_payload
# create_app
# index
# api_state
# api_start
# api_rate
# api_command
# api_extract
# main

EXTRACTION_EMPTY_MSG = "No extractable text found. (Scanned PDF likely needs OCR.)"

SAMPLE_TEXT = (
    "Rapid serial reading shows one word at a time, always in the same place. "
    "Your eyes stop jumping across the line; instead, the words come to you. "
    "Each word is pinned on one letter, slightly left of center, so recognition starts "
    "before you notice it. Sentence ends pause a little longer. Commas, a little less. "
    "Press space to pause, and use the arrow keys to change the pace."
)

COMMANDS = {
    "toggle": ReaderController.toggle,
    "resume": ReaderController.resume,
    "stop": ReaderController.stop,
    "reset": ReaderController.reset,
    "skip": ReaderController.skip_countdown,
}


def normalize_whitespace(text: str) -> str:
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# -------------------------------
# Document text extraction
# -------------------------------
def extract_text_from_pdf(path: str) -> str:
    reader = PdfReader(path)
    pages_text: List[str] = []
    for i, page in enumerate(reader.pages):
        try:
            txt = page.extract_text() or ""
        except Exception as e:
            logger.warning("Skipping unreadable page %d of %s: %s", i + 1, path, e)
            txt = ""
        pages_text.append(txt)
    return normalize_whitespace("\n\n".join(pages_text))


def extract_text_from_epub(path: str) -> str:
    try:
        book = epub.read_epub(path)
    except Exception as e:
        raise RuntimeError(f"Invalid EPUB file: {e}") from e

    parts: List[str] = []
    for item in book.get_items():
        media_type = str(getattr(item, "media_type", ""))
        if "application/xhtml+xml" not in media_type and "text/html" not in media_type:
            continue
        soup = BeautifulSoup(item.get_content(), "html.parser")
        for tag in soup(["script", "style", "nav"]):
            tag.decompose()
        text = normalize_whitespace(soup.get_text(separator=" ", strip=True))
        if text:
            parts.append(text)

    if not parts:
        raise RuntimeError("No readable HTML/XHTML content found in EPUB.")
    return normalize_whitespace("\n\n".join(parts))


def extract_text_from_file(path: str) -> str:
    ext = Path(path).suffix.lower()
    if ext == ".pdf":
        return extract_text_from_pdf(path)
    if ext == ".epub":
        return extract_text_from_epub(path)
    raise RuntimeError(f"Unsupported file type: {ext} (expected .pdf or .epub)")


def allowed_file(filename: str) -> bool:
    return Path(filename).suffix.lower() in config.ALLOWED_EXTENSIONS


def build_payload(text: str, filename: str) -> dict:
    return {
        "ok": True,
        "filename": filename,
        "text": text,
        "units": list(tokenize(text)),
        "word_count": len(re.findall(r"\b\w+\b", text)),
        "char_count": len(text),
    }


def _state_response(snap: Snapshot):
    return jsonify({"ok": True, "state": snap.to_dict()})


def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def _log_mode_changes(reader: ReaderController) -> None:
    last = {"mode": reader.state.mode}

    def listener(snap: Snapshot) -> None:
        if snap.mode is last["mode"]:
            return
        last["mode"] = snap.mode
        if snap.mode is Mode.FINISHED:
            logger.info("Finished reading %d units at %d WPM", snap.total, snap.rate)
        else:
            logger.info("Reader is now %s (%d/%d)", snap.mode.value, snap.position + 1, snap.total)

    reader.subscribe(listener)


# -------------------------------
# App
# -------------------------------
def create_app(controller: Optional[ReaderController] = None) -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_MB * 1024 * 1024

    reader = controller if controller is not None else ReaderController(rate=config.DEFAULT_WPM)
    app.extensions["speedread_reader"] = reader
    _log_mode_changes(reader)

    @app.route("/", methods=["GET"])
    def index():
        return render_template_string(
            HTML_PAGE,
            rate_step=RATE_STEP,
            min_rate=MIN_RATE,
            max_rate=MAX_RATE,
            sample_text=SAMPLE_TEXT,
        )

    @app.route("/api/state", methods=["GET"])
    def api_state():
        return _state_response(_reader().snapshot())

    @app.route("/api/start", methods=["POST"])
    def api_start():
        data = request.get_json(silent=True) or {}
        text = data.get("text", "")
        if not isinstance(text, str):
            return _error("'text' must be a string", 400)
        return _state_response(_reader().start(text))

    @app.route("/api/rate", methods=["POST"])
    def api_rate():
        data = request.get_json(silent=True) or {}
        delta = data.get("delta")
        if isinstance(delta, bool) or not isinstance(delta, int):
            return _error("'delta' must be an integer", 400)
        return _state_response(_reader().adjust_rate(delta))

    @app.route("/api/<command>", methods=["POST"])
    def api_command(command: str):
        action = COMMANDS.get(command)
        if action is None:
            return _error(f"Unknown command: {command}", 404)
        return _state_response(action(_reader()))

    @app.route("/api/extract", methods=["POST"])
    def api_extract():
        if "file" not in request.files:
            return _error("No file uploaded", 400)

        f = request.files["file"]
        if not f or not f.filename:
            return _error("Missing file", 400)

        filename = f.filename
        if not allowed_file(filename):
            return _error("Unsupported file type (use .pdf or .epub)", 400)

        suffix = Path(filename).suffix.lower()

        try:
            with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
                temp_path = tmp.name
                f.save(temp_path)

            try:
                text = extract_text_from_file(temp_path)
            finally:
                try:
                    os.unlink(temp_path)
                except OSError as e:
                    logger.warning("Could not remove temp upload %s: %s", temp_path, e)

            if not text.strip():
                return _error(EXTRACTION_EMPTY_MSG, 400)

            logger.info("Extracted %d characters from %s", len(text), filename)
            return jsonify(build_payload(text, filename))

        except Exception as e:
            logger.exception("Extraction failed for %s", filename)
            return _error(str(e), 500)

    return app


def _reader() -> ReaderController:
    return current_app.extensions["speedread_reader"]


HTML_PAGE = r"""
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Local Speed Reader (RSVP + ORP)</title>
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <style>
    :root {
      --bg: #0f1115;
      --panel: #181c24;
      --text: #e8edf5;
      --muted: #9fb0c8;
      --accent: #66b3ff;
      --line: #2e3645;
      --orp-center: #ff6f6f;
      --mono-font: "Roboto Mono", "SF Mono", Menlo, Consolas, "Liberation Mono", monospace;
      --sans-font: Inter, system-ui, -apple-system, "Segoe UI", Roboto, sans-serif;
    }
    * { box-sizing: border-box; }
    body { margin: 0; background: var(--bg); color: var(--text); font-family: var(--sans-font); }
    main { max-width: 960px; margin: 0 auto; padding: 24px; display: flex; flex-direction: column; gap: 16px; }
    textarea { width: 100%; height: 180px; background: var(--panel); color: var(--text);
               border: 1px solid var(--line); border-radius: 8px; padding: 12px; font-size: 15px; }
    .row { display: flex; gap: 8px; flex-wrap: wrap; align-items: center; }
    button { background: var(--panel); color: var(--text); border: 1px solid var(--line);
             border-radius: 6px; padding: 8px 14px; cursor: pointer; }
    button.primary { border-color: var(--accent); color: var(--accent); }
    #stage { background: var(--panel); border: 1px solid var(--line); border-radius: 10px;
             padding: 48px 0; position: relative; }
    #stage::before { content: ""; position: absolute; left: 50%; top: 16px; bottom: 16px;
                     border-left: 1px dashed var(--line); }
    #word { display: grid; grid-template-columns: 1fr auto 1fr; font-family: var(--mono-font); font-size: 48px; }
    #before { text-align: right; white-space: pre; }
    #focal { color: var(--orp-center); white-space: pre; }
    #after { text-align: left; white-space: pre; }
    #countdown { text-align: center; font-size: 64px; color: var(--accent); cursor: pointer; }
    #meta { color: var(--muted); font-size: 13px; display: flex; justify-content: space-between; }
    #status.error { color: var(--orp-center); }
  </style>
</head>
<body>
<main>
  <textarea id="textInput" placeholder="Paste or type your text here..."></textarea>
  <div class="row">
    <button id="startBtn" class="primary">Start Reading</button>
    <button id="sampleBtn">Try Sample Text</button>
    <button id="playBtn">Play</button>
    <button id="stopBtn">Stop</button>
    <button id="resetBtn">Reset</button>
    <button id="slowerBtn">- {{ rate_step }} WPM</button>
    <button id="fasterBtn">+ {{ rate_step }} WPM</button>
    <input id="fileInput" type="file" accept=".pdf,.epub" />
    <button id="loadBtn">Load PDF/EPUB</button>
  </div>
  <div id="stage">
    <div id="countdown" title="Click to skip"></div>
    <div id="word"><span id="before"></span><span id="focal"></span><span id="after"></span></div>
  </div>
  <div id="meta">
    <span id="position">0 / 0</span>
    <span id="rate">WPM</span>
    <span id="remaining">0:00 left</span>
  </div>
  <div id="status"></div>
  <div id="hint" style="color: var(--muted); font-size: 12px;">
    Space: play/pause (skips countdown) &middot; Left/Right: WPM {{ min_rate }}-{{ max_rate }}
  </div>
</main>
<script>
(() => {
  const els = {
    textInput: document.getElementById("textInput"),
    startBtn: document.getElementById("startBtn"),
    sampleBtn: document.getElementById("sampleBtn"),
    playBtn: document.getElementById("playBtn"),
    stopBtn: document.getElementById("stopBtn"),
    resetBtn: document.getElementById("resetBtn"),
    slowerBtn: document.getElementById("slowerBtn"),
    fasterBtn: document.getElementById("fasterBtn"),
    fileInput: document.getElementById("fileInput"),
    loadBtn: document.getElementById("loadBtn"),
    countdown: document.getElementById("countdown"),
    before: document.getElementById("before"),
    focal: document.getElementById("focal"),
    after: document.getElementById("after"),
    position: document.getElementById("position"),
    rate: document.getElementById("rate"),
    remaining: document.getElementById("remaining"),
    status: document.getElementById("status"),
  };
  const RATE_STEP = {{ rate_step }};
  const SAMPLE_TEXT = {{ sample_text|tojson }};
  let mode = "idle";

  function setStatus(msg, isError = false) {
    els.status.textContent = msg;
    els.status.className = isError ? "error" : "";
  }

  function render(s) {
    mode = s.mode;
    els.countdown.textContent = s.countdown === null ? "" : String(s.countdown);
    els.before.textContent = s.before;
    els.focal.textContent = s.focal;
    els.after.textContent = s.after;
    els.position.textContent = `${s.total ? s.position + 1 : 0} / ${s.total} (${s.progress}%)`;
    els.rate.textContent = `${s.rate} WPM`;
    els.remaining.textContent = `${s.remaining_label} left`;
    els.playBtn.textContent = s.mode === "playing" ? "Pause" : "Play";
  }

  async function post(path, body) {
    const res = await fetch(path, {
      method: "POST",
      headers: { "Content-Type": "application/json" },
      body: JSON.stringify(body || {}),
    });
    const data = await res.json();
    if (!res.ok || !data.ok) throw new Error(data.error || "Request failed");
    render(data.state);
  }

  async function poll() {
    try {
      const res = await fetch("/api/state");
      const data = await res.json();
      if (data.ok) render(data.state);
    } catch (err) {
      console.error(err);
    }
  }

  function run(promise) {
    promise.catch((err) => setStatus(err.message || String(err), true));
  }

  async function loadFile() {
    const file = els.fileInput.files && els.fileInput.files[0];
    if (!file) return setStatus("Choose a PDF or EPUB first.", true);
    setStatus("Uploading and extracting text...");
    const form = new FormData();
    form.append("file", file);
    try {
      const res = await fetch("/api/extract", { method: "POST", body: form });
      const data = await res.json();
      if (!res.ok || !data.ok) throw new Error(data.error || "Extraction failed");
      els.textInput.value = data.text;
      setStatus(`Loaded ${data.filename} (${data.word_count.toLocaleString()} words)`);
    } catch (err) {
      setStatus(`Load failed: ${err.message || err}`, true);
    }
  }

  els.startBtn.addEventListener("click", () => run(post("/api/start", { text: els.textInput.value })));
  els.sampleBtn.addEventListener("click", () => {
    els.textInput.value = SAMPLE_TEXT;
    run(post("/api/start", { text: SAMPLE_TEXT }));
  });
  els.countdown.addEventListener("click", () => {
    if (mode === "countdown") run(post("/api/skip"));
  });
  els.playBtn.addEventListener("click", () => run(post("/api/toggle")));
  els.stopBtn.addEventListener("click", () => run(post("/api/stop")));
  els.resetBtn.addEventListener("click", () => run(post("/api/reset")));
  els.slowerBtn.addEventListener("click", () => run(post("/api/rate", { delta: -RATE_STEP })));
  els.fasterBtn.addEventListener("click", () => run(post("/api/rate", { delta: RATE_STEP })));
  els.loadBtn.addEventListener("click", loadFile);

  window.addEventListener("keydown", (e) => {
    if (e.target instanceof HTMLTextAreaElement) return;
    if (e.key === " ") {
      e.preventDefault();
      run(post(mode === "countdown" ? "/api/skip" : "/api/toggle"));
    } else if (e.key === "ArrowLeft") {
      e.preventDefault();
      run(post("/api/rate", { delta: -RATE_STEP }));
    } else if (e.key === "ArrowRight") {
      e.preventDefault();
      run(post("/api/rate", { delta: RATE_STEP }));
    }
  });

  setInterval(poll, 50);
  poll();
})();
</script>
</body>
</html>
"""


app = create_app()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Local RSVP speed reader with ORP focus")
    parser.add_argument("--host", default=config.HOST, help="Interface to bind (default: %(default)s)")
    parser.add_argument("--port", type=int, default=config.PORT, help="Port to listen on (default: %(default)s)")
    parser.add_argument("--wpm", type=int, default=config.DEFAULT_WPM, help="Starting words per minute")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: %(default)s)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    server = create_app(ReaderController(rate=args.wpm))
    logger.info("Starting local speed reader on http://%s:%d", args.host, args.port)
    server.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
