"""
Artifact classifier: decides what the uploaded game file really is and reads
it under the size ceiling that applies to that kind.
"""
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import BinaryIO, List, Optional

from errors import InvalidGameFile, InvalidRequest
from schemas import GameWarning, SubmissionFields

logger = logging.getLogger(__name__)

KIND_HTML = "html"
KIND_SCRIPT = "script"
KIND_ZIP = "zip"

KB = 1024
MB = 1024 * KB

HTML_CEILINGS = {"2d": 500 * KB, "3d": 2 * MB}
SCRIPT_CEILING = 50 * KB
BUNDLE_CEILINGS = {
    "2d_basic": 5 * MB,
    "2d_rich": 15 * MB,
    "3d_standard": 25 * MB,
    "3d_premium": 50 * MB,
}

ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
SNIFF_BYTES = 512
READ_CHUNK = 64 * KB


@dataclass
class ZipEntry:
    path: str
    extension: str
    category: str
    size_bytes: int


@dataclass
class Artifact:
    kind: str
    declared_format: Optional[str]
    dimensions: str
    tier: Optional[str]
    filename: str
    size_bytes: int
    ceiling_bytes: int
    data: bytes = field(repr=False)
    entries: List[ZipEntry] = field(default_factory=list)
    # Decoded source: the page for html, the file for script, game.js for zip.
    text: Optional[str] = field(default=None, repr=False)

    @property
    def format(self) -> str:
        """Format recorded on the published game; bundles are served as html."""
        return KIND_HTML if self.kind == KIND_ZIP else self.kind

    @property
    def content_type(self) -> str:
        return {
            KIND_HTML: "text/html; charset=utf-8",
            KIND_SCRIPT: "application/javascript; charset=utf-8",
            KIND_ZIP: "application/zip",
        }[self.kind]


def decode_text(data: bytes, what: str, error_cls=InvalidGameFile) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise error_cls(
            f"{what} is not valid UTF-8 (byte offset {e.start})",
            sub_reason="INVALID_ENCODING",
            details={"offset": e.start},
        )


def peek(stream: BinaryIO, size: int = SNIFF_BYTES) -> bytes:
    """Read the first bytes of a seekable stream and rewind it."""
    head = stream.read(size)
    stream.seek(0)
    return head


def sniff_kind(filename: Optional[str], head: bytes, declared_format: Optional[str]) -> str:
    """
    Zip signatures and a .zip extension always win over the declared format;
    then the .js/.html extension; then the declared format; then content.
    """
    ext = PurePosixPath((filename or "").lower()).suffix
    if ext == ".zip" or head.startswith(ZIP_SIGNATURES):
        return KIND_ZIP
    if ext in (".js", ".mjs"):
        return KIND_SCRIPT
    if ext in (".html", ".htm"):
        return KIND_HTML
    if declared_format in (KIND_HTML, KIND_SCRIPT):
        return declared_format
    text = head.lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    return KIND_HTML if text.startswith((b"<!doctype", b"<html", b"<")) else KIND_SCRIPT


def ceiling_for(kind: str, dimensions: str, tier: Optional[str]) -> int:
    if kind == KIND_SCRIPT:
        return SCRIPT_CEILING
    if kind == KIND_HTML:
        return HTML_CEILINGS[dimensions]
    if tier not in BUNDLE_CEILINGS:
        raise InvalidRequest("tier is required for zip bundles", details={"field": "tier"})
    return BUNDLE_CEILINGS[tier]


def read_capped(stream: BinaryIO, cap: int, chunk_size: int = READ_CHUNK) -> bytes:
    """Read at most cap + 1 bytes; a result longer than cap means the stream is over the limit."""
    buf = bytearray()
    while len(buf) <= cap:
        chunk = stream.read(min(chunk_size, cap + 1 - len(buf)))
        if not chunk:
            break
        buf.extend(chunk)
    return bytes(buf)


def classify(
    fields: SubmissionFields,
    filename: Optional[str],
    stream: BinaryIO,
    warnings: List[GameWarning],
) -> Artifact:
    kind = sniff_kind(filename, peek(stream), fields.format)
    ceiling = ceiling_for(kind, fields.dimensions, fields.tier)

    data = read_capped(stream, ceiling)
    if len(data) > ceiling:
        label = fields.tier if kind == KIND_ZIP else f"{kind}/{fields.dimensions}"
        raise InvalidGameFile(
            f"Game file exceeds the {ceiling // KB} KB limit for {label}",
            sub_reason="FILE_TOO_LARGE",
            details={"max_bytes": ceiling, "kind": kind},
        )
    if not data:
        raise InvalidGameFile("Game file is empty", sub_reason="EMPTY_FILE")

    if fields.format and fields.format != (KIND_HTML if kind == KIND_ZIP else kind):
        warnings.append(GameWarning(
            code="FORMAT_OVERRIDDEN",
            message=f"Declared format '{fields.format}' ignored; file classified as {kind}",
        ))

    logger.debug(f"Classified {filename!r} as {kind} ({len(data)} bytes, ceiling {ceiling})")
    return Artifact(
        kind=kind,
        declared_format=fields.format,
        dimensions=fields.dimensions,
        tier=fields.tier if kind == KIND_ZIP else None,
        filename=filename or f"game.{'js' if kind == KIND_SCRIPT else kind}",
        size_bytes=len(data),
        ceiling_bytes=ceiling,
        data=data,
    )
