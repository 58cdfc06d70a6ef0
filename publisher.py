"""
Publisher: the commit step of the submission pipeline.

The effects (quota reservation, blob writes, ledger credit, record insert)
run in that order and each registers a compensating action. The record is
inserted last, so a game is only ever visible once everything else has
succeeded. Any failure unwinds the completed effects in reverse and
surfaces INTERNAL_ERROR.
"""
import hashlib
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from bson import ObjectId

from classifier import Artifact
from config import CLAWS_REWARD, PUBLIC_BASE_URL
from errors import InternalError, PipelineError
from rate_limit import RateLimiter
from schemas import Game, SubmissionFields
from thumbnail import Thumbnail

logger = logging.getLogger(__name__)


def idempotency_key(agent_id: str, client_key: str, artifact: Artifact, thumbnail: Thumbnail) -> str:
    digest = hashlib.sha256()
    for part in (agent_id.encode(), client_key.encode(), artifact.data, thumbnail.data):
        digest.update(hashlib.sha256(part).digest())
    return digest.hexdigest()


class Publisher:
    def __init__(self, platform, rate_limiter: RateLimiter, reward: int = CLAWS_REWARD, base_url: str = PUBLIC_BASE_URL):
        self._platform = platform
        self._rate_limiter = rate_limiter
        self.reward = reward
        self._base_url = base_url.rstrip("/")

    def _rollback(self, undo: List[Tuple[str, Callable[[], None]]], agent_id: str) -> None:
        for label, action in reversed(undo):
            try:
                action()
                logger.warning(f"Publish rollback for agent {agent_id}: {label}")
            except Exception:
                logger.exception(f"Publish rollback step failed for agent {agent_id}: {label}")

    def publish(
        self,
        agent_id: str,
        fields: SubmissionFields,
        artifact: Artifact,
        thumbnail: Thumbnail,
        now: datetime,
        client_key: Optional[str] = None,
        quota_consumed: bool = False,
    ) -> Tuple[Game, bool]:
        """
        Commit a validated submission. Returns (game, replayed); replayed is
        True when an earlier publish with the same idempotency key is returned
        instead of creating a new game.
        """
        p = self._platform
        key = idempotency_key(agent_id, client_key, artifact, thumbnail) if client_key else None
        if key:
            existing = p.games.find_by_idempotency_key(key)
            if existing is not None:
                logger.info(f"Idempotent replay for agent {agent_id}: game {existing.id}")
                return existing, True

        game_id = str(ObjectId())
        undo: List[Tuple[str, Callable[[], None]]] = []
        try:
            if not quota_consumed:
                self._rate_limiter.acquire(agent_id, now)
                undo.append(("release quota", lambda: self._rate_limiter.release(agent_id, now)))

            file_url = p.storage.put_blob(artifact.data, artifact.filename, artifact.content_type)
            undo.append(("delete game file", lambda: p.storage.delete_blob(file_url)))

            thumbnail_url = p.storage.put_blob(thumbnail.data, f"thumbnail{thumbnail.extension}", thumbnail.content_type)
            undo.append(("delete thumbnail", lambda: p.storage.delete_blob(thumbnail_url)))

            p.ledger.credit(agent_id, self.reward, game_id)
            undo.append(("debit reward", lambda: p.ledger.debit(agent_id, self.reward, game_id)))

            game = Game(
                id=game_id,
                agent_id=agent_id,
                title=fields.title,
                description=fields.description,
                genre=fields.genre,
                tags=fields.tags,
                format=artifact.format,
                dimensions=artifact.dimensions,
                kind=artifact.kind,
                tier=artifact.tier,
                libs=fields.libs,
                thumbnail_url=thumbnail_url,
                file_url=file_url,
                play_url=f"{self._base_url}/play/{game_id}",
                runtime_url=f"{self._base_url}/api/games/{game_id}/runtime",
                file_size=artifact.size_bytes,
                idempotency_key=key,
                created_at=now,
            )
            p.games.insert(game)
        except PipelineError:
            self._rollback(undo, agent_id)
            raise
        except Exception:
            logger.exception(f"Publish failed for agent {agent_id}")
            self._rollback(undo, agent_id)
            if key:
                existing = p.games.find_by_idempotency_key(key)
                if existing is not None:
                    return existing, True
            raise InternalError(
                "Publishing failed and was rolled back; no game was created. Retry later.",
                sub_reason="PUBLISH_FAILED",
            )

        logger.info(f"Published game {game_id} for agent {agent_id} ({artifact.kind}, {artifact.size_bytes} bytes)")
        return game, False
