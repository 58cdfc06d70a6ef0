"""Unit tests for fields.py"""

import pytest


def _raw(**overrides):
    raw = {
        "title": "Claw Demo",
        "genre": "Arcade",
        "description": "Grab the prize.",
        "game_file": object(),
        "thumbnail": object(),
    }
    raw.update(overrides)
    return raw


class TestParseList:

    def test_json_array(self):
        from fields import parse_list
        assert parse_list('["a", " b ", ""]') == ["a", "b"]

    def test_comma_separated(self):
        from fields import parse_list
        assert parse_list("a, b,,c ") == ["a", "b", "c"]

    def test_empty(self):
        from fields import parse_list
        assert parse_list(None) == []
        assert parse_list("   ") == []

    def test_bad_json(self):
        from fields import parse_list
        with pytest.raises(ValueError):
            parse_list('["a", ')
        with pytest.raises(ValueError):
            parse_list("[1, 2]")


class TestValidateFields:

    def test_normalizes_values(self):
        from fields import validate_fields
        fields = validate_fields(_raw(tags="Puzzle, fun, puzzle", libs='["Phaser"]'), is_bundle=False)
        assert fields.genre == "arcade"
        assert fields.tags == ["puzzle", "fun"]
        assert fields.libs == ["phaser"]
        assert fields.dimensions == "2d"
        assert fields.format is None
        assert fields.tier is None

    def test_collects_every_error(self):
        from fields import validate_fields
        from errors import InvalidRequest
        raw = _raw(title="ab", genre="cooking", tags="a,b,c,d,e,f", thumbnail=None)
        with pytest.raises(InvalidRequest) as exc:
            validate_fields(raw, is_bundle=False)
        err = exc.value
        assert err.code == "INVALID_REQUEST"
        assert err.status_code == 400
        assert [e["field"] for e in err.details["errors"]] == ["title", "genre", "tags", "thumbnail"]
        assert err.details["field"] == "title"

    def test_title_bounds(self):
        from fields import validate_fields
        from errors import InvalidRequest
        validate_fields(_raw(title="abc"), is_bundle=False)
        validate_fields(_raw(title="x" * 100), is_bundle=False)
        with pytest.raises(InvalidRequest):
            validate_fields(_raw(title="x" * 101), is_bundle=False)

    def test_missing_title_and_genre(self):
        from fields import validate_fields
        from errors import InvalidRequest
        with pytest.raises(InvalidRequest) as exc:
            validate_fields(_raw(title=None, genre=None), is_bundle=False)
        assert [e["field"] for e in exc.value.details["errors"]] == ["title", "genre"]

    def test_long_description_and_tag(self):
        from fields import validate_fields
        from errors import InvalidRequest
        with pytest.raises(InvalidRequest) as exc:
            validate_fields(_raw(description="d" * 2001, tags="t" * 31), is_bundle=False)
        assert [e["field"] for e in exc.value.details["errors"]] == ["description", "tags"]

    def test_bad_enums(self):
        from fields import validate_fields
        from errors import InvalidRequest
        with pytest.raises(InvalidRequest) as exc:
            validate_fields(_raw(format="flash", dimensions="4d"), is_bundle=False)
        assert [e["field"] for e in exc.value.details["errors"]] == ["format", "dimensions"]

    def test_tier_required_for_bundles(self):
        from fields import validate_fields
        from errors import InvalidRequest
        with pytest.raises(InvalidRequest) as exc:
            validate_fields(_raw(), is_bundle=True)
        assert exc.value.details["field"] == "tier"
        assert validate_fields(_raw(tier="3D_Premium"), is_bundle=True).tier == "3d_premium"

    def test_unknown_tier(self):
        from fields import validate_fields
        from errors import InvalidRequest
        with pytest.raises(InvalidRequest):
            validate_fields(_raw(tier="gold"), is_bundle=True)
