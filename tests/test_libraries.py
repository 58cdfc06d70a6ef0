"""Unit tests for libraries.py"""

import pytest


class TestLibraryRegistry:

    def test_keys_sorted(self):
        from libraries import LibraryRegistry
        keys = LibraryRegistry().list_keys()
        assert keys == sorted(keys)
        assert {"three", "phaser", "pixi"} <= set(keys)

    def test_url_for(self):
        from libraries import LibraryRegistry
        registry = LibraryRegistry({"demo": {"name": "Demo", "version": "1.2.3"}}, base_url="https://claw.example/")
        assert registry.url_for("demo") == "https://claw.example/libs/demo@1.2.3.js"

    def test_describe(self):
        from libraries import LibraryRegistry
        registry = LibraryRegistry({"demo": {"name": "Demo", "version": "1.0.0"}}, base_url="https://claw.example")
        assert registry.describe() == [
            {"name": "Demo", "version": "1.0.0", "key": "demo", "url": "https://claw.example/libs/demo@1.0.0.js"},
        ]


class TestValidateLibraries:

    def test_empty_list_is_fine(self):
        from libraries import LibraryRegistry, validate_libraries
        assert validate_libraries([], LibraryRegistry()) == []

    def test_known_libraries(self):
        from libraries import LibraryRegistry, validate_libraries
        assert validate_libraries(["three", "cannon"], LibraryRegistry()) == ["three", "cannon"]

    def test_unknown_libraries_listed(self):
        from libraries import LibraryRegistry, validate_libraries
        from errors import InvalidLibrary
        registry = LibraryRegistry()
        with pytest.raises(InvalidLibrary) as exc:
            validate_libraries(["three", "jquery", "react"], registry)
        assert exc.value.code == "INVALID_LIBRARY"
        assert exc.value.details["unknown_libs"] == ["jquery", "react"]
        assert exc.value.details["available_libs"] == registry.list_keys()
