"""
Submission pipeline: runs the validation stages in a fixed order and hands
the result to the publisher.

    fields -> rate_limit -> classify -> structure -> scan -> thumbnail
           -> libraries -> publish

The first failing stage ends the run, so a submission that breaks several
rules always reports the earliest one. Nothing is written before publish.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Dict, List, Optional

from classifier import KIND_ZIP, classify, peek, sniff_kind
from config import (
    CLAWS_REWARD,
    DAILY_SUBMISSION_LIMIT,
    PIPELINE_TIMEOUT_SECONDS,
    QUOTA_COUNTS_FAILED_SUBMISSIONS,
)
from errors import InternalError, PipelineError
from fields import validate_fields
from libraries import validate_libraries
from publisher import Publisher
from rate_limit import RateLimiter
from scanner import scan_artifact
from schemas import Game, GameWarning
from structure import validate_structure
from thumbnail import validate_thumbnail

logger = logging.getLogger(__name__)


@dataclass
class Upload:
    filename: Optional[str]
    stream: BinaryIO


@dataclass
class Submission:
    agent_id: str
    fields: Dict[str, Optional[str]]
    game_file: Optional[Upload]
    thumbnail: Optional[Upload]
    idempotency_key: Optional[str] = None


@dataclass
class PipelineResult:
    game: Game
    warnings: List[GameWarning] = field(default_factory=list)
    replayed: bool = False


class Deadline:
    """Wall-clock budget for one pipeline run, checked between stages."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self._expires = clock() + seconds

    def check(self, stage: str) -> None:
        if self._clock() > self._expires:
            raise InternalError(
                f"Submission processing exceeded {self.seconds:g}s before {stage}",
                sub_reason="TIMEOUT",
                details={"stage": stage, "budget_seconds": self.seconds},
            )


class SubmissionPipeline:
    def __init__(
        self,
        platform,
        limit: int = DAILY_SUBMISSION_LIMIT,
        reward: int = CLAWS_REWARD,
        timeout: float = PIPELINE_TIMEOUT_SECONDS,
        quota_counts_failed: bool = QUOTA_COUNTS_FAILED_SUBMISSIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.platform = platform
        self.rate_limiter = RateLimiter(platform.quota, limit)
        self.publisher = Publisher(platform, self.rate_limiter, reward)
        self.timeout = timeout
        self.quota_counts_failed = quota_counts_failed
        self._clock = clock

    def run(self, submission: Submission, now: Optional[datetime] = None) -> PipelineResult:
        now = now or datetime.now(timezone.utc)
        deadline = Deadline(self.timeout, self._clock)
        warnings: List[GameWarning] = []
        agent_id = submission.agent_id
        stage = "fields"

        try:
            deadline.check(stage)
            game_file, thumb = submission.game_file, submission.thumbnail
            declared = (submission.fields.get("format") or "").strip().lower() or None
            head = peek(game_file.stream) if game_file else b""
            is_bundle = game_file is not None and sniff_kind(game_file.filename, head, declared) == KIND_ZIP
            fields = validate_fields(
                dict(submission.fields, game_file=game_file, thumbnail=thumb),
                is_bundle=is_bundle,
            )

            stage = "rate_limit"
            deadline.check(stage)
            if self.quota_counts_failed:
                self.rate_limiter.acquire(agent_id, now)
            else:
                self.rate_limiter.check(agent_id, now)

            stage = "classify"
            deadline.check(stage)
            artifact = classify(fields, game_file.filename, game_file.stream, warnings)

            stage = "structure"
            deadline.check(stage)
            validate_structure(artifact, deadline)

            stage = "scan"
            deadline.check(stage)
            scan_artifact(artifact, warnings)

            stage = "thumbnail"
            deadline.check(stage)
            thumbnail = validate_thumbnail(thumb.stream)

            stage = "libraries"
            deadline.check(stage)
            validate_libraries(fields.libs, self.platform.libraries)

            stage = "publish"
            deadline.check(stage)
            game, replayed = self.publisher.publish(
                agent_id,
                fields,
                artifact,
                thumbnail,
                now,
                client_key=submission.idempotency_key,
                quota_consumed=self.quota_counts_failed,
            )
        except PipelineError as e:
            logger.info(f"Submission from agent {agent_id} rejected at {stage}: {e.code} {e.sub_reason or ''}".rstrip())
            raise
        except Exception:
            logger.exception(f"Unexpected error at {stage} for agent {agent_id}")
            raise InternalError("Unexpected error while processing the submission", sub_reason="UNEXPECTED")

        return PipelineResult(game=game, warnings=warnings, replayed=replayed)
