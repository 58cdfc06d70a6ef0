"""
Structural validator: format-specific skeleton checks.

html -> required markup, the 2d canvas, and the external script allow-list.
zip  -> archive layout, allowed asset types, per-asset and per-tier size
        caps measured on the decompressed stream.
script files have no structural stage.
"""
import io
import logging
import re
import zipfile
import zlib
from pathlib import PurePosixPath
from typing import List, Optional
from urllib.parse import urlsplit

from classifier import KB, MB, KIND_HTML, KIND_ZIP, SCRIPT_CEILING, Artifact, ZipEntry, decode_text
from config import ALLOWED_SCRIPT_HOSTS, PUBLIC_BASE_URL
from errors import InvalidAssetBundle, InvalidGameFile
from libraries import LIBS_PATH

logger = logging.getLogger(__name__)

CANVAS_ID = "clawmachine-canvas"

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.S)
_REQUIRED_MARKUP = (
    ("<!DOCTYPE html>", re.compile(r"<!doctype\s+html\s*>", re.I)),
    ("<html>", re.compile(r"<html\b", re.I)),
    ("<body>", re.compile(r"<body\b", re.I)),
    ("<script>", re.compile(r"<script\b", re.I)),
)
_CANVAS_RE = re.compile(r"<canvas\b[^>]*\bid\s*=\s*[\"']?" + CANVAS_ID + r"[\"'\s/>]", re.I)
_SCRIPT_SRC_RE = re.compile(r"<script\b[^>]*?\bsrc\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s>]+))", re.I)

GAME_JS = "game.js"
MAX_BUNDLE_ENTRIES = 500
STREAM_CHUNK = 64 * KB

ASSET_CATEGORIES = {
    ".png": "image", ".jpg": "image", ".jpeg": "image", ".gif": "image", ".webp": "image",
    ".mp3": "audio", ".ogg": "audio", ".wav": "audio", ".m4a": "audio",
    ".glb": "model", ".gltf": "model", ".obj": "model", ".bin": "model",
    ".woff": "font", ".woff2": "font", ".ttf": "font", ".otf": "font",
    ".json": "json",
}
CATEGORY_CEILINGS = {
    "image": 2 * MB,
    "audio": 5 * MB,
    "model": 20 * MB,
    "font": 1 * MB,
    "json": 1 * MB,
    "script": SCRIPT_CEILING,
}


# -----------------
# HTML
# -----------------
def _script_allowed(src: str, allowed_hosts: List[str]) -> bool:
    src = src.strip()
    if src.startswith(LIBS_PATH):
        return True
    if src.startswith(f"{PUBLIC_BASE_URL}{LIBS_PATH}"):
        return True
    parts = urlsplit(src)
    if parts.scheme not in ("https", "") or not parts.netloc:
        return False
    return (parts.hostname or "").lower() in allowed_hosts


def validate_html(artifact: Artifact, allowed_hosts: Optional[List[str]] = None) -> None:
    allowed_hosts = [h.lower() for h in (allowed_hosts if allowed_hosts is not None else ALLOWED_SCRIPT_HOSTS)]
    if artifact.text is None:
        artifact.text = decode_text(artifact.data, "HTML file")
    markup = _HTML_COMMENT_RE.sub(" ", artifact.text)

    missing = [label for label, pattern in _REQUIRED_MARKUP if not pattern.search(markup)]
    if missing:
        raise InvalidGameFile(
            f"HTML file is missing required elements: {', '.join(missing)}",
            sub_reason="MISSING_HTML_STRUCTURE",
            details={"missing_elements": missing},
        )

    if artifact.dimensions == "2d" and not _CANVAS_RE.search(markup):
        raise InvalidGameFile(
            f'2d HTML games must include <canvas id="{CANVAS_ID}">',
            sub_reason="MISSING_CANVAS",
            details={"canvas_id": CANVAS_ID},
        )

    invalid = []
    for m in _SCRIPT_SRC_RE.finditer(markup):
        src = next(g for g in m.groups() if g is not None)
        if not _script_allowed(src, allowed_hosts):
            invalid.append(src)
    if invalid:
        raise InvalidGameFile(
            f"External scripts must be loaded over https from an allowed host: {', '.join(invalid)}",
            sub_reason="INVALID_EXTERNAL_SCRIPT",
            details={"invalid_scripts": invalid, "allowed_hosts": allowed_hosts, "library_path": LIBS_PATH},
        )


# -----------------
# Zip bundles
# -----------------
def _unsafe(info: zipfile.ZipInfo) -> bool:
    name = info.filename
    if name.startswith(("/", "\\")) or re.match(r"^[A-Za-z]:", name):
        return True
    if ".." in PurePosixPath(name.replace("\\", "/")).parts:
        return True
    # Unix mode bits live in the high word of external_attr; 0xA is a symlink.
    return (info.external_attr >> 28) == 0xA


def _category(name: str) -> Optional[str]:
    if name == GAME_JS:
        return "script"
    return ASSET_CATEGORIES.get(PurePosixPath(name.lower()).suffix)


def _asset_too_large(name: str, category: str, size: int) -> InvalidAssetBundle:
    ceiling = CATEGORY_CEILINGS[category]
    if category == "script":
        return InvalidAssetBundle(
            f"game.js exceeds {ceiling // KB} KB",
            sub_reason="GAME_JS_TOO_LARGE",
            details={"max_bytes": ceiling, "size_bytes": size},
        )
    return InvalidAssetBundle(
        f"{name} exceeds the {ceiling // KB} KB limit for {category} assets",
        sub_reason="ASSET_TOO_LARGE",
        details={"file": name, "category": category, "max_bytes": ceiling, "size_bytes": size},
    )


def _bundle_too_large(ceiling: int, tier: Optional[str]) -> InvalidAssetBundle:
    return InvalidAssetBundle(
        f"Bundle contents exceed the {ceiling // MB} MB limit for tier {tier}",
        sub_reason="BUNDLE_TOO_LARGE",
        details={"max_bytes": ceiling, "tier": tier},
    )


def validate_bundle(artifact: Artifact, deadline=None) -> None:
    """
    Validate the archive and fill ``artifact.entries`` and ``artifact.text``
    (the decoded game.js). Decompressed sizes are counted chunk by chunk and
    checked against every cap as they grow, so an archive is never expanded
    past a limit before it is rejected. ``deadline`` is checked before each
    chunk.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(artifact.data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
        raise InvalidAssetBundle(f"Not a valid zip archive: {e}", sub_reason="INVALID_ZIP")

    with archive:
        infos = [i for i in archive.infolist() if not i.is_dir()]
        if len(infos) > MAX_BUNDLE_ENTRIES:
            raise InvalidAssetBundle(
                f"Bundle has {len(infos)} files; at most {MAX_BUNDLE_ENTRIES} allowed",
                sub_reason="TOO_MANY_FILES",
                details={"max_files": MAX_BUNDLE_ENTRIES},
            )

        unsafe = [i.filename for i in archive.infolist() if _unsafe(i)]
        if unsafe:
            raise InvalidAssetBundle(
                "Bundle contains absolute paths, parent references or symlinks",
                sub_reason="UNSAFE_PATH",
                details={"files": unsafe},
            )

        all_names = [i.filename for i in archive.infolist()]
        duplicates = sorted({name for name in all_names if all_names.count(name) > 1})
        if duplicates:
            raise InvalidAssetBundle(
                f"Bundle contains duplicate entries: {', '.join(duplicates[:10])}",
                sub_reason="DUPLICATE_ENTRY",
                details={"files": duplicates},
            )

        names = [i.filename for i in infos]
        if GAME_JS not in names:
            raise InvalidAssetBundle(
                "Bundle must contain game.js at the archive root",
                sub_reason="MISSING_GAME_JS",
                details={"files": names[:50]},
            )
        game_js = infos[names.index(GAME_JS)]
        if game_js.file_size > SCRIPT_CEILING:
            raise _asset_too_large(GAME_JS, "script", game_js.file_size)

        invalid = [i.filename for i in infos if _category(i.filename) is None]
        if invalid:
            raise InvalidAssetBundle(
                f"Disallowed file types in bundle: {', '.join(invalid[:10])}",
                sub_reason="INVALID_FILE_TYPE",
                details={"invalid_files": invalid, "allowed_extensions": sorted(ASSET_CATEGORIES)},
            )

        # Cheap pass over the central directory; sizes there are client data
        # and are re-measured below.
        declared_total = 0
        for info in infos:
            category = _category(info.filename)
            if info.file_size > CATEGORY_CEILINGS[category]:
                raise _asset_too_large(info.filename, category, info.file_size)
            declared_total += info.file_size
            if declared_total > artifact.ceiling_bytes:
                raise _bundle_too_large(artifact.ceiling_bytes, artifact.tier)

        # game.js first so the script is always measured, then the assets.
        ordered = [game_js] + [i for i in infos if i is not game_js]
        total = 0
        entries: List[ZipEntry] = []
        script_bytes = b""
        try:
            for info in ordered:
                category = _category(info.filename)
                ceiling = CATEGORY_CEILINGS[category]
                size = 0
                keep = bytearray() if info is game_js else None
                with archive.open(info) as fh:
                    while True:
                        if deadline is not None:
                            deadline.check("structure")
                        chunk = fh.read(STREAM_CHUNK)
                        if not chunk:
                            break
                        size += len(chunk)
                        total += len(chunk)
                        if size > ceiling:
                            raise _asset_too_large(info.filename, category, size)
                        if total > artifact.ceiling_bytes:
                            raise _bundle_too_large(artifact.ceiling_bytes, artifact.tier)
                        if keep is not None:
                            keep.extend(chunk)
                if keep is not None:
                    script_bytes = bytes(keep)
                entries.append(ZipEntry(
                    path=info.filename,
                    extension=PurePosixPath(info.filename.lower()).suffix,
                    category=category,
                    size_bytes=size,
                ))
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
            raise InvalidAssetBundle(f"Corrupt or unsupported zip entry: {e}", sub_reason="INVALID_ZIP")

    artifact.entries = entries
    artifact.text = decode_text(script_bytes, "game.js")
    logger.debug(f"Bundle validated: {len(entries)} files, {total} bytes uncompressed")


def validate_structure(artifact: Artifact, deadline=None) -> None:
    if artifact.kind == KIND_HTML:
        validate_html(artifact)
    elif artifact.kind == KIND_ZIP:
        validate_bundle(artifact, deadline)
