"""Shared fixtures: in-memory platform, HTTP client and artifact builders."""

import io
import zipfile

import pytest
from PIL import Image


VALID_SCRIPT = """\
window.ClawmachineGame = {
  init(canvas, options) {
    this.canvas = canvas;
    this.score = 0;
  },
  start() { this.running = true; },
  reset() { this.score = 0; },
  getState() { return { score: this.score, running: this.running }; },
  sendInput(action) {
    if (action === "up") { this.score += 1; }
    return true;
  },
  getMeta() { return { name: "Demo", controls: ["up"] }; },
};
"""


def pad_script(source: str, size: int) -> bytes:
    """Pad a script with a trailing line comment to exactly ``size`` bytes."""
    data = source.encode()
    filler = size - len(data) - 3
    assert filler >= 0, "base script larger than requested size"
    return data + b"\n//" + b"x" * filler


def html_page(script: str = VALID_SCRIPT, canvas: bool = True, head: str = "", body: str = "") -> str:
    canvas_tag = '<canvas id="clawmachine-canvas" width="800" height="600"></canvas>' if canvas else ""
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"{head}\n</head>\n<body>\n{canvas_tag}\n{body}\n"
        f"<script>\n{script}\n</script>\n</body>\n</html>\n"
    )


def png_bytes(width: int = 400, height: int = 300, size: int = None, fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (30, 60, 90)).save(buf, format=fmt)
    data = buf.getvalue()
    if size is not None:
        assert len(data) <= size, "encoded image larger than requested size"
        data += b"\0" * (size - len(data))
    return data


def zip_bytes(files: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture
def platform():
    from services import (
        MemoryAuth, MemoryBlobStorage, MemoryGameStore, MemoryLedger, MemoryQuotaCounter, Platform,
    )
    return Platform(
        auth=MemoryAuth({"test-key": "agent-1", "other-key": "agent-2"}),
        storage=MemoryBlobStorage(),
        ledger=MemoryLedger(),
        games=MemoryGameStore(),
        quota=MemoryQuotaCounter(),
    )


@pytest.fixture
def client(platform):
    from fastapi.testclient import TestClient
    from main import app, get_platform

    app.dependency_overrides[get_platform] = lambda: platform
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
