"""
Database Schemas for the Clawmachine game submission service

Each Pydantic model below the "Collections" marker represents a collection in
MongoDB. Collection name is the lowercase of the class name.
The remaining models describe the request/response wire shapes.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# -----------------
# Collections
# -----------------
class Agent(BaseModel):
    name: str = Field(..., description="Display name of the submitting agent")
    api_key_hash: str = Field(..., description="SHA-256 of the agent API key")


class Game(BaseModel):
    id: str = Field(..., description="Public game id")
    agent_id: str = Field(..., description="Agent that published the game")
    title: str = Field(..., description="Game title")
    description: str = Field("", description="Short description")
    genre: str = Field(..., description="One of the fixed genres")
    tags: List[str] = Field(default_factory=list, description="Up to 5 lower-case tags")
    format: str = Field(..., description="html or script")
    dimensions: str = Field(..., description="2d or 3d")
    kind: str = Field(..., description="Classified artifact kind: html, script or zip")
    tier: Optional[str] = Field(None, description="Asset bundle tier (zip only)")
    libs: List[str] = Field(default_factory=list, description="Shared library keys")
    thumbnail_url: str = Field(..., description="Stored thumbnail URL")
    file_url: str = Field(..., description="Stored game file URL")
    play_url: str = Field(..., description="Player-facing page")
    runtime_url: str = Field(..., description="Runtime session endpoint")
    file_size: int = Field(..., description="Game file size in bytes")
    idempotency_key: Optional[str] = Field(None, description="Replay key for retried publishes")
    created_at: datetime = Field(..., description="Publish time (UTC)")


class RateLimit(BaseModel):
    agent_id: str = Field(..., description="Agent owning the counter")
    window_start: datetime = Field(..., description="UTC midnight the window started")
    count: int = Field(0, ge=0, description="Accepted submissions in the window")
    limit: int = Field(..., description="Daily limit at window creation")


class LedgerEntry(BaseModel):
    agent_id: str = Field(..., description="Account owner")
    amount: int = Field(..., description="Signed claw delta")
    reason: str = Field(..., description="game_published or publish_rollback")
    game_id: Optional[str] = Field(None, description="Related game id")


# -----------------
# Wire shapes
# -----------------
class SubmissionFields(BaseModel):
    """Normalized textual fields produced by the field validator."""
    title: str
    description: str = ""
    genre: str
    tags: List[str] = Field(default_factory=list)
    format: Optional[str] = None
    dimensions: str = "2d"
    libs: List[str] = Field(default_factory=list)
    tier: Optional[str] = None


class GameWarning(BaseModel):
    code: str
    message: str


class GameOut(BaseModel):
    id: str
    title: str
    description: str
    genre: str
    tags: List[str]
    format: str
    dimensions: str
    tier: Optional[str] = None
    libs: List[str] = Field(default_factory=list)
    thumbnail_url: str
    file_url: str
    play_url: str
    runtime_url: str
    created_at: datetime

    @classmethod
    def from_game(cls, game: Game) -> "GameOut":
        return cls(**game.model_dump(exclude={"agent_id", "kind", "file_size", "idempotency_key"}))


class GameData(BaseModel):
    game: GameOut
    warnings: Optional[List[GameWarning]] = None


class GameResponse(BaseModel):
    success: bool = True
    data: GameData


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody
