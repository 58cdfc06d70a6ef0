import logging
import threading
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from fastapi import FastAPI, Depends, File, Form, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import CORS_ORIGINS, LOG_LEVEL, PUBLIC_BASE_URL, STORAGE_DIR
from database import db
from errors import InvalidRequest, NotFound, PipelineError, Unauthorized
from pipeline import SubmissionPipeline, Submission, Upload
from rate_limit import QuotaStatus
from schemas import GameOut
from services import Platform, build_platform

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Clawmachine Game Submission API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------
# Dependencies
# -----------------
_platform: Optional[Platform] = None
_platform_lock = threading.Lock()


def get_platform() -> Platform:
    global _platform
    if _platform is None:
        with _platform_lock:
            if _platform is None:
                _platform = build_platform(db, STORAGE_DIR, PUBLIC_BASE_URL)
    return _platform


def get_pipeline(platform: Platform = Depends(get_platform)) -> SubmissionPipeline:
    return SubmissionPipeline(platform)


# -----------------
# Helpers
# -----------------
def error_response(exc: PipelineError, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
        headers=headers,
    )


def rate_limit_headers(status: QuotaStatus, now: datetime, limited: bool = False) -> Dict[str, str]:
    headers = status.headers()
    if limited:
        headers["Retry-After"] = str(max(int((status.resets_at - now).total_seconds()), 0))
    return headers


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return error_response(InvalidRequest("Malformed request", details={"errors": errors}))


# -----------------
# Base routes
# -----------------
@app.get("/")
def read_root():
    return {"message": "Clawmachine Game Submission API Running"}


@app.get("/test")
def test_database():
    response: Dict[str, Any] = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
            try:
                response["collections"] = db.list_collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Not configured (in-memory mode)"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# -----------------
# Game submission
# -----------------
@app.post("/api/games", status_code=201)
def submit_game(
    title: Optional[str] = Form(None),
    genre: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    format: Optional[str] = Form(None),
    dimensions: Optional[str] = Form(None),
    libs: Optional[str] = Form(None),
    tier: Optional[str] = Form(None),
    game_file: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    x_api_key: Optional[str] = Header(None),
    idempotency_key: Optional[str] = Header(None),
    platform: Platform = Depends(get_platform),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
):
    now = datetime.now(timezone.utc)
    limiter = pipeline.rate_limiter

    try:
        agent_id = platform.auth.resolve(x_api_key)
    except Unauthorized as e:
        return error_response(e, rate_limit_headers(limiter.status(None, now), now))

    submission = Submission(
        agent_id=agent_id,
        fields={
            "title": title,
            "genre": genre,
            "description": description,
            "tags": tags,
            "format": format,
            "dimensions": dimensions,
            "libs": libs,
            "tier": tier,
        },
        game_file=Upload(game_file.filename, game_file.file) if game_file is not None else None,
        thumbnail=Upload(thumbnail.filename, thumbnail.file) if thumbnail is not None else None,
        idempotency_key=idempotency_key,
    )

    try:
        result = pipeline.run(submission, now=now)
    except PipelineError as e:
        headers = rate_limit_headers(limiter.status(agent_id, now), now, limited=e.code == "RATE_LIMITED")
        return error_response(e, headers)

    data: Dict[str, Any] = {"game": GameOut.from_game(result.game).model_dump(mode="json")}
    if result.warnings:
        data["warnings"] = [w.model_dump() for w in result.warnings]
    headers = rate_limit_headers(limiter.status(agent_id, now), now)
    if result.replayed:
        headers["Idempotent-Replay"] = "true"
    return JSONResponse(status_code=201, content={"success": True, "data": data}, headers=headers)


# -----------------
# Published games
# -----------------
@app.get("/api/games")
def list_games(
    genre: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    platform: Platform = Depends(get_platform),
):
    games = platform.games.list(genre=genre.lower() if genre else None, limit=limit)
    return {"success": True, "data": {"games": [GameOut.from_game(g).model_dump(mode="json") for g in games]}}


@app.get("/api/games/{game_id}")
def get_game(game_id: str, platform: Platform = Depends(get_platform)):
    game = platform.games.get(game_id)
    if game is None:
        raise NotFound(f"Game {game_id} not found", details={"game_id": game_id})
    return {"success": True, "data": {"game": GameOut.from_game(game).model_dump(mode="json")}}


@app.get("/api/libraries")
def list_libraries(platform: Platform = Depends(get_platform)):
    return {"success": True, "data": {"libraries": platform.libraries.describe()}}
