"""
Field validator: presence and shape of the textual multipart fields.

All violations are collected and reported together as one INVALID_REQUEST,
with ``details.errors`` listing each offending field.
"""
import json
from typing import Any, Dict, List, Mapping, Optional

from errors import InvalidRequest
from schemas import SubmissionFields

GENRES = (
    "action", "adventure", "arcade", "casual", "horror", "music", "platformer",
    "puzzle", "racing", "rpg", "shooter", "simulation", "sports", "strategy",
)
FORMATS = ("html", "script")
DIMENSIONS = ("2d", "3d")
TIERS = ("2d_basic", "2d_rich", "3d_standard", "3d_premium")

TITLE_MIN, TITLE_MAX = 3, 100
DESCRIPTION_MAX = 2000
MAX_TAGS, TAG_MAX = 5, 30


def parse_list(value: Optional[str]) -> List[str]:
    """Accept a JSON array string or a comma-separated string."""
    if value is None:
        return []
    value = value.strip()
    if not value:
        return []
    if value.startswith("["):
        try:
            items = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON array: {e.msg}")
        if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            raise ValueError("must be an array of strings")
    else:
        items = value.split(",")
    return [i.strip() for i in items if i.strip()]


def _dedupe(items: List[str]) -> List[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def validate_fields(raw: Mapping[str, Any], is_bundle: bool) -> SubmissionFields:
    """
    Validate raw form values.

    ``is_bundle`` comes from sniffing the uploaded game file; it decides
    whether ``tier`` is required.
    """
    errors: List[Dict[str, str]] = []

    def fail(name: str, message: str) -> None:
        errors.append({"field": name, "message": message})

    def text(name: str) -> Optional[str]:
        value = raw.get(name)
        if value is None:
            return None
        return str(value).strip()

    title = text("title") or ""
    if not title:
        fail("title", "title is required")
    elif not TITLE_MIN <= len(title) <= TITLE_MAX:
        fail("title", f"title must be {TITLE_MIN}-{TITLE_MAX} characters (got {len(title)})")

    description = text("description") or ""
    if len(description) > DESCRIPTION_MAX:
        fail("description", f"description must be at most {DESCRIPTION_MAX} characters (got {len(description)})")

    genre = (text("genre") or "").lower()
    if not genre:
        fail("genre", "genre is required")
    elif genre not in GENRES:
        fail("genre", f"genre must be one of: {', '.join(GENRES)}")

    tags: List[str] = []
    try:
        tags = _dedupe([t.lower() for t in parse_list(raw.get("tags"))])
    except ValueError as e:
        fail("tags", f"tags {e}")
    if len(tags) > MAX_TAGS:
        fail("tags", f"at most {MAX_TAGS} tags allowed (got {len(tags)})")
    long_tags = [t for t in tags if len(t) > TAG_MAX]
    if long_tags:
        fail("tags", f"tags must be at most {TAG_MAX} characters: {', '.join(long_tags)}")

    fmt = (text("format") or "").lower() or None
    if fmt is not None and fmt not in FORMATS:
        fail("format", f"format must be one of: {', '.join(FORMATS)}")

    dimensions = (text("dimensions") or "2d").lower()
    if dimensions not in DIMENSIONS:
        fail("dimensions", f"dimensions must be one of: {', '.join(DIMENSIONS)}")

    libs: List[str] = []
    try:
        libs = _dedupe([lib.lower() for lib in parse_list(raw.get("libs"))])
    except ValueError as e:
        fail("libs", f"libs {e}")

    tier = (text("tier") or "").lower() or None
    if is_bundle:
        if tier is None:
            fail("tier", f"tier is required for zip bundles; one of: {', '.join(TIERS)}")
        elif tier not in TIERS:
            fail("tier", f"tier must be one of: {', '.join(TIERS)}")
    else:
        tier = None

    if raw.get("game_file") is None:
        fail("game_file", "game_file is required")
    if raw.get("thumbnail") is None:
        fail("thumbnail", "thumbnail is required")

    if errors:
        raise InvalidRequest(
            "; ".join(e["message"] for e in errors),
            details={"field": errors[0]["field"], "errors": errors},
        )

    return SubmissionFields(
        title=title,
        description=description,
        genre=genre,
        tags=tags,
        format=fmt,
        dimensions=dimensions,
        libs=libs,
        tier=tier,
    )
