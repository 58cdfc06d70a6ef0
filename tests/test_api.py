"""
HTTP tests for main.py using FastAPI's TestClient.

The ``client`` fixture overrides get_platform with the in-memory platform
from conftest, so no MongoDB or filesystem is involved.
"""

from datetime import datetime, timezone

from conftest import VALID_SCRIPT, pad_script, png_bytes


API_KEY = {"X-API-Key": "test-key"}


def _post(client, game=None, thumb=None, filename="game.js", headers=None, **fields):
    data = {"title": "Claw Demo", "genre": "arcade"}
    data.update(fields)
    files = {
        "game_file": (filename, VALID_SCRIPT.encode() if game is None else game, "application/octet-stream"),
        "thumbnail": ("thumb.png", png_bytes() if thumb is None else thumb, "image/png"),
    }
    return client.post("/api/games", data=data, files=files, headers=API_KEY if headers is None else headers)


def _exhaust_quota(platform, agent_id="agent-1", limit=10):
    from rate_limit import window_key
    platform.quota.counts[window_key(agent_id, datetime.now(timezone.utc))] = limit


class TestSubmitGame:

    def test_script_submission_published(self, client, platform):
        res = _post(
            client,
            game=pad_script(VALID_SCRIPT, 30 * 1024),
            thumb=png_bytes(size=150 * 1024),
            tags="claw,demo",
        )
        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        game = body["data"]["game"]
        assert game["format"] == "script"
        assert game["tags"] == ["claw", "demo"]
        assert game["play_url"].endswith(f"/play/{game['id']}")
        assert "agent_id" not in game
        assert "warnings" not in body["data"]
        assert platform.ledger.balance("agent-1") == 100
        assert res.headers["X-RateLimit-Limit"] == "10"
        assert res.headers["X-RateLimit-Remaining"] == "9"

    def test_warnings_in_response(self, client):
        res = _post(client, game=(VALID_SCRIPT + "\nconsole.log(1);\n").encode())
        assert res.status_code == 201
        assert [w["code"] for w in res.json()["data"]["warnings"]] == ["DEBUG_OUTPUT"]

    def test_missing_api_key(self, client):
        res = _post(client, headers={})
        assert res.status_code == 401
        body = res.json()
        assert body == {"success": False, "error": {"code": "UNAUTHORIZED", "message": "Missing X-API-Key header"}}
        assert res.headers["X-RateLimit-Limit"] == "10"

    def test_invalid_api_key(self, client):
        res = _post(client, headers={"X-API-Key": "nope"})
        assert res.status_code == 401
        assert res.json()["error"]["code"] == "UNAUTHORIZED"

    def test_missing_fields_and_files(self, client):
        res = client.post("/api/games", data={"genre": "arcade"}, headers=API_KEY)
        assert res.status_code == 400
        error = res.json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert [e["field"] for e in error["details"]["errors"]] == ["title", "game_file", "thumbnail"]

    def test_rate_limited(self, client, platform):
        _exhaust_quota(platform)
        res = _post(client)
        assert res.status_code == 429
        assert res.json()["error"]["code"] == "RATE_LIMITED"
        assert res.headers["X-RateLimit-Remaining"] == "0"
        assert int(res.headers["Retry-After"]) > 0

    def test_quota_is_per_agent(self, client, platform):
        _exhaust_quota(platform, agent_id="agent-2")
        assert _post(client).status_code == 201

    def test_invalid_game_file(self, client):
        res = _post(client, game=b"const x = 1;")
        assert res.status_code == 400
        error = res.json()["error"]
        assert error["code"] == "INVALID_GAME_FILE"
        assert error["details"]["reason"] == "MISSING_GAME_OBJECT"

    def test_invalid_thumbnail(self, client):
        res = _post(client, thumb=png_bytes(399, 300))
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "INVALID_THUMBNAIL"
        assert res.json()["error"]["details"]["reason"] == "WRONG_DIMENSIONS"

    def test_unknown_library(self, client):
        res = _post(client, libs="jquery")
        assert res.status_code == 400
        assert res.json()["error"]["details"]["unknown_libs"] == ["jquery"]

    def test_rejected_submission_does_not_use_quota(self, client):
        _post(client, libs="jquery")
        res = _post(client)
        assert res.headers["X-RateLimit-Remaining"] == "9"

    def test_idempotent_retry(self, client, platform):
        first = _post(client, headers={**API_KEY, "Idempotency-Key": "attempt-1"})
        second = _post(client, headers={**API_KEY, "Idempotency-Key": "attempt-1"})
        assert first.status_code == second.status_code == 201
        assert "Idempotent-Replay" not in first.headers
        assert second.headers["Idempotent-Replay"] == "true"
        assert second.json()["data"]["game"]["id"] == first.json()["data"]["game"]["id"]
        assert platform.ledger.balance("agent-1") == 100


class TestReadRoutes:

    def test_get_game(self, client):
        game_id = _post(client).json()["data"]["game"]["id"]
        res = client.get(f"/api/games/{game_id}")
        assert res.status_code == 200
        assert res.json()["data"]["game"]["id"] == game_id

    def test_get_unknown_game(self, client):
        res = client.get("/api/games/does-not-exist")
        assert res.status_code == 404
        assert res.json()["error"]["code"] == "NOT_FOUND"

    def test_list_games_by_genre(self, client):
        _post(client, genre="puzzle")
        _post(client, genre="arcade")
        games = client.get("/api/games", params={"genre": "Puzzle"}).json()["data"]["games"]
        assert [g["genre"] for g in games] == ["puzzle"]

    def test_list_limit_validated(self, client):
        res = client.get("/api/games", params={"limit": 0})
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "INVALID_REQUEST"

    def test_libraries(self, client):
        res = client.get("/api/libraries")
        assert res.status_code == 200
        keys = [lib["key"] for lib in res.json()["data"]["libraries"]]
        assert "phaser" in keys and "three" in keys

    def test_root(self, client):
        assert client.get("/").status_code == 200


class TestPlatformSingleton:

    def test_concurrent_first_requests_share_one_platform(self, monkeypatch):
        import threading
        import time

        import main

        built = []

        def slow_build(database, storage_dir, base_url):
            time.sleep(0.05)
            built.append(object())
            return built[-1]

        monkeypatch.setattr(main, "_platform", None)
        monkeypatch.setattr(main, "build_platform", slow_build)

        results = []
        threads = [threading.Thread(target=lambda: results.append(main.get_platform())) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(built) == 1
        assert all(r is built[0] for r in results)
