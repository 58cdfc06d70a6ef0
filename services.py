"""
Collaborators the submission pipeline talks to.

Each collaborator comes in a MongoDB-backed flavour (production) and an
in-memory flavour (development without DATABASE_URL, and tests). The
``Platform`` container bundles one of each and is what the HTTP layer
injects into the pipeline.
"""
import hashlib
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents
from errors import Unauthorized
from libraries import LibraryRegistry
from schemas import Agent, Game, LedgerEntry, RateLimit

logger = logging.getLogger(__name__)


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode()).hexdigest()


# -----------------
# Auth
# -----------------
class MongoAuth:
    """Resolves X-API-Key against the ``agent`` collection."""

    def __init__(self, database):
        self._db = database
        self._agents = database["agent"]

    def register(self, api_key: str, name: str) -> str:
        return create_document("agent", Agent(name=name, api_key_hash=hash_api_key(api_key)), database=self._db)

    def resolve(self, api_key: Optional[str]) -> str:
        if not api_key:
            raise Unauthorized("Missing X-API-Key header")
        agent = self._agents.find_one({"api_key_hash": hash_api_key(api_key)})
        if not agent:
            raise Unauthorized("Invalid API key")
        return str(agent["_id"])


class MemoryAuth:
    def __init__(self, keys: Optional[Dict[str, str]] = None):
        self._agents = {hash_api_key(k): v for k, v in (keys or {}).items()}

    def register(self, api_key: str, agent_id: str) -> None:
        self._agents[hash_api_key(api_key)] = agent_id

    def resolve(self, api_key: Optional[str]) -> str:
        if not api_key:
            raise Unauthorized("Missing X-API-Key header")
        agent_id = self._agents.get(hash_api_key(api_key))
        if agent_id is None:
            raise Unauthorized("Invalid API key")
        return agent_id


# -----------------
# Blob storage
# -----------------
class LocalBlobStorage:
    """Writes blobs under ``root`` and hands out ``{base_url}/files/<name>`` URLs."""

    def __init__(self, root: str, base_url: str):
        self._root = Path(root).expanduser()
        self._base_url = base_url.rstrip("/")

    def put_blob(self, data: bytes, filename: str, content_type: str) -> str:
        self._root.mkdir(parents=True, exist_ok=True)
        suffix = Path(filename or "").suffix.lower()
        name = f"{uuid.uuid4().hex}{suffix}"
        tmp = self._root / f".{name}.part"
        tmp.write_bytes(data)
        os.replace(tmp, self._root / name)
        return f"{self._base_url}/files/{name}"

    def delete_blob(self, url: str) -> None:
        name = url.rsplit("/", 1)[-1]
        (self._root / name).unlink(missing_ok=True)


class MemoryBlobStorage:
    def __init__(self, base_url: str = "memory://blobs"):
        self._base_url = base_url
        self._lock = threading.Lock()
        self.blobs: Dict[str, bytes] = {}

    def put_blob(self, data: bytes, filename: str, content_type: str) -> str:
        url = f"{self._base_url}/{uuid.uuid4().hex}{Path(filename or '').suffix.lower()}"
        with self._lock:
            self.blobs[url] = bytes(data)
        return url

    def delete_blob(self, url: str) -> None:
        with self._lock:
            self.blobs.pop(url, None)


# -----------------
# Ledger
# -----------------
class MongoLedger:
    def __init__(self, database):
        self._db = database
        self._accounts = database["ledger_account"]

    def _apply(self, agent_id: str, amount: int, reason: str, game_id: Optional[str]) -> int:
        account = self._accounts.find_one_and_update(
            {"_id": agent_id},
            {
                "$inc": {"claws": amount},
                "$set": {"updated_at": datetime.now(timezone.utc)},
                "$setOnInsert": {"agent_id": agent_id},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        try:
            create_document(
                "ledger_entry",
                LedgerEntry(agent_id=agent_id, amount=amount, reason=reason, game_id=game_id),
                database=self._db,
            )
        except Exception:
            logger.warning(f"Ledger entry write failed for agent {agent_id}; reverting {amount:+d} claws")
            self._accounts.update_one({"_id": agent_id}, {"$inc": {"claws": -amount}})
            raise
        return account["claws"]

    def credit(self, agent_id: str, amount: int, game_id: Optional[str] = None) -> int:
        return self._apply(agent_id, amount, "game_published", game_id)

    def debit(self, agent_id: str, amount: int, game_id: Optional[str] = None) -> int:
        return self._apply(agent_id, -amount, "publish_rollback", game_id)

    def balance(self, agent_id: str) -> int:
        account = self._accounts.find_one({"_id": agent_id})
        return account["claws"] if account else 0


class MemoryLedger:
    def __init__(self):
        self._lock = threading.Lock()
        self.accounts: Dict[str, int] = {}
        self.entries: List[dict] = []

    def _apply(self, agent_id: str, amount: int, reason: str, game_id: Optional[str]) -> int:
        with self._lock:
            self.accounts[agent_id] = self.accounts.get(agent_id, 0) + amount
            self.entries.append({"agent_id": agent_id, "amount": amount, "reason": reason, "game_id": game_id})
            return self.accounts[agent_id]

    def credit(self, agent_id: str, amount: int, game_id: Optional[str] = None) -> int:
        return self._apply(agent_id, amount, "game_published", game_id)

    def debit(self, agent_id: str, amount: int, game_id: Optional[str] = None) -> int:
        return self._apply(agent_id, -amount, "publish_rollback", game_id)

    def balance(self, agent_id: str) -> int:
        with self._lock:
            return self.accounts.get(agent_id, 0)


# -----------------
# Game records
# -----------------
class MongoGameStore:
    def __init__(self, database):
        self._db = database
        self._games = database["game"]

    def ensure_indexes(self) -> None:
        self._games.create_index("genre")
        self._games.create_index(
            "idempotency_key",
            unique=True,
            partialFilterExpression={"idempotency_key": {"$type": "string"}},
        )

    @staticmethod
    def _to_game(doc: Optional[dict]) -> Optional[Game]:
        if not doc:
            return None
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        return Game(**doc)

    def insert(self, game: Game) -> None:
        doc = game.model_dump(exclude={"id"})
        doc["_id"] = game.id
        self._games.insert_one(doc)

    def get(self, game_id: str) -> Optional[Game]:
        return self._to_game(self._games.find_one({"_id": game_id}))

    def list(self, genre: Optional[str] = None, limit: int = 20) -> List[Game]:
        query = {"genre": genre} if genre else {}
        return [self._to_game(doc) for doc in get_documents("game", query, limit, database=self._db)]

    def find_by_idempotency_key(self, key: str) -> Optional[Game]:
        return self._to_game(self._games.find_one({"idempotency_key": key}))


class MemoryGameStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._games: Dict[str, Game] = {}

    def insert(self, game: Game) -> None:
        with self._lock:
            if game.id in self._games:
                raise KeyError(f"duplicate game id {game.id}")
            if game.idempotency_key and any(
                g.idempotency_key == game.idempotency_key for g in self._games.values()
            ):
                raise KeyError("duplicate idempotency key")
            self._games[game.id] = game

    def get(self, game_id: str) -> Optional[Game]:
        with self._lock:
            return self._games.get(game_id)

    def list(self, genre: Optional[str] = None, limit: int = 20) -> List[Game]:
        with self._lock:
            games = [g for g in self._games.values() if not genre or g.genre == genre]
        games.sort(key=lambda g: g.created_at, reverse=True)
        return games[:limit]

    def find_by_idempotency_key(self, key: str) -> Optional[Game]:
        with self._lock:
            for game in self._games.values():
                if game.idempotency_key == key:
                    return game
        return None


# -----------------
# Quota counters
# -----------------
class MongoQuotaCounter:
    """
    Per agent+UTC-date counters in the ``rate_limit`` collection.

    try_increment is a single find_one_and_update: the filter only matches
    while count < limit, so once the limit is reached the upsert collides
    with the existing _id and raises DuplicateKeyError.
    """

    def __init__(self, database):
        self._counters = database["rate_limit"]

    def peek(self, key: str) -> int:
        doc = self._counters.find_one({"_id": key})
        return doc["count"] if doc else 0

    def try_increment(self, key: str, limit: int, agent_id: str, window_start: datetime) -> bool:
        window = RateLimit(agent_id=agent_id, window_start=window_start, limit=limit)
        query = {"_id": key, "count": {"$lt": limit}}
        update = {"$inc": {"count": 1}, "$setOnInsert": window.model_dump(exclude={"count"})}
        try:
            self._counters.find_one_and_update(
                query, update, upsert=True, return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Either the counter is full or a concurrent first request of the
            # day created it first; the non-upsert retry tells them apart.
            doc = self._counters.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
            return doc is not None
        return True

    def decrement(self, key: str) -> None:
        self._counters.update_one({"_id": key, "count": {"$gt": 0}}, {"$inc": {"count": -1}})


class MemoryQuotaCounter:
    def __init__(self):
        self._lock = threading.Lock()
        self.counts: Dict[str, int] = {}

    def peek(self, key: str) -> int:
        with self._lock:
            return self.counts.get(key, 0)

    def try_increment(self, key: str, limit: int, agent_id: str, window_start: datetime) -> bool:
        with self._lock:
            current = self.counts.get(key, 0)
            if current >= limit:
                return False
            self.counts[key] = current + 1
            return True

    def decrement(self, key: str) -> None:
        with self._lock:
            if self.counts.get(key, 0) > 0:
                self.counts[key] -= 1


# -----------------
# Container
# -----------------
@dataclass
class Platform:
    auth: object
    storage: object
    ledger: object
    games: object
    quota: object
    libraries: LibraryRegistry = field(default_factory=LibraryRegistry)


def build_platform(database, storage_dir: str, base_url: str) -> Platform:
    """Wire Mongo-backed collaborators when a database is configured, in-memory ones otherwise."""
    storage = LocalBlobStorage(storage_dir, base_url)
    if database is None:
        logger.warning("DATABASE_URL not set; using in-memory auth, ledger, games and quota")
        return Platform(
            auth=MemoryAuth(),
            storage=storage,
            ledger=MemoryLedger(),
            games=MemoryGameStore(),
            quota=MemoryQuotaCounter(),
        )

    games = MongoGameStore(database)
    games.ensure_indexes()
    return Platform(
        auth=MongoAuth(database),
        storage=storage,
        ledger=MongoLedger(database),
        games=games,
        quota=MongoQuotaCounter(database),
    )
