from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path

from fastapi import Body, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from reeltrack import runtime, types as t
from reeltrack.db import Database
from reeltrack.exceptions import NotFound, PipelineError
from reeltrack.orchestrator import Orchestrator
from reeltrack.query import QueryService
from reeltrack.stages import TranscriptionStage, VisionStage
from reeltrack.transcribe import Transcriber
from reeltrack.vision import Analyzer
from reeltrack.worker import TaskQueue

MIN_QUERY_LENGTH = 2


class VideoCreate(BaseModel):
    url: str
    title: str
    description: str = ""
    video_id: str | None = None


class VideoOut(BaseModel):
    video_id: str
    owner_id: str
    url: str
    title: str
    description: str
    uploaded_at: str
    transcription_status: str
    vision_status: str


class TagOut(BaseModel):
    tag_id: str
    label: str
    type: str
    confidence: float | None = None
    timestamp: float | None = None


class TranscriptionRequest(BaseModel):
    language: str | None = None
    languages: list[str] | None = None


class StartResponse(BaseModel):
    status: str
    video_id: str
    language: str | None = None
    languages: list[str] | None = None


class ProcessResponse(BaseModel):
    video_id: str
    dispatched: dict[str, bool]


class StatusResponse(BaseModel):
    video_id: str
    title: str
    transcription_status: str
    vision_status: str
    tag_count: int
    has_transcript: bool
    is_processing: bool
    is_completed: bool


class StatusBatchRequest(BaseModel):
    video_ids: list[str]


class SearchResult(BaseModel):
    video: VideoOut
    relevance_score: float
    tags: list[TagOut]


class SearchResponse(BaseModel):
    query: str
    type: str
    results: list[SearchResult]
    count: int


def _video_out(v: t.Video) -> VideoOut:
    return VideoOut(**asdict(v))


def _tag_out(tag: t.Tag) -> TagOut:
    return TagOut(
        tag_id=tag.tag_id, label=tag.label, type=tag.type,
        confidence=tag.confidence, timestamp=tag.timestamp,
    )


def _requester(x_user_id: str) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def _check_query(q: str) -> str:
    q = q.strip()
    if len(q) < MIN_QUERY_LENGTH:
        raise HTTPException(
            status_code=400, detail=f"Search query must be at least {MIN_QUERY_LENGTH} characters long",
        )
    return q


def create_app(
    db: Database | None = None,
    transcriber: Transcriber | None = None,
    analyzer: Analyzer | None = None,
    workers: int | None = None,
    db_path: Path | None = None,
) -> FastAPI:
    owns_db = db is None
    _db = db or Database.open(db_path or runtime.DB_PATH)
    if transcriber is None:
        from reeltrack.transcribe import AssemblyAITranscriber
        transcriber = AssemblyAITranscriber()
    if analyzer is None:
        from reeltrack.vision import ClaudeVisionAnalyzer
        analyzer = ClaudeVisionAnalyzer()

    queue = TaskQueue(workers)
    transcription = TranscriptionStage(_db, transcriber, queue)
    vision = VisionStage(_db, analyzer, queue)
    orchestrator = Orchestrator(_db, transcription, vision)
    queries = QueryService(_db)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        queue.start()
        yield
        await queue.stop()
        if owns_db:
            _db.close()

    app = FastAPI(title="Reeltrack Processing Pipeline", lifespan=lifespan)
    app.state.db = _db
    app.state.queue = queue
    app.state.orchestrator = orchestrator

    @app.exception_handler(PipelineError)
    async def pipeline_error(request: Request, exc: PipelineError):
        return JSONResponse({"detail": str(exc), **exc.extra()}, status_code=exc.status_code)

    # --- Videos ---

    @app.post("/videos", response_model=VideoOut, status_code=201)
    async def create_video(body: VideoCreate, x_user_id: str = Header(default="")):
        owner = _requester(x_user_id)
        video = _db.insert_video(
            owner, body.url, body.title, body.description, video_id=body.video_id,
        )
        return _video_out(video)

    @app.get("/videos", response_model=list[VideoOut])
    async def list_videos(x_user_id: str = Header(default="")):
        return [_video_out(v) for v in _db.list_videos(_requester(x_user_id))]

    @app.get("/videos/{video_id}", response_model=VideoOut)
    async def get_video(video_id: str, x_user_id: str = Header(default="")):
        return _video_out(_db.get_owned_video(video_id, _requester(x_user_id)))

    @app.delete("/videos/{video_id}")
    async def delete_video(video_id: str, x_user_id: str = Header(default="")):
        _db.get_owned_video(video_id, _requester(x_user_id))
        _db.delete_video(video_id)
        return {"message": "Video deleted", "video_id": video_id}

    # --- Transcription ---

    @app.post("/videos/{video_id}/transcription", response_model=StartResponse, status_code=202)
    async def start_transcription(
        video_id: str,
        body: TranscriptionRequest | None = Body(default=None),
        x_user_id: str = Header(default=""),
    ):
        _db.get_owned_video(video_id, _requester(x_user_id))
        body = body or TranscriptionRequest()
        requested = body.languages if body.languages is not None else body.language
        return await transcription.start(video_id, requested)

    @app.get("/videos/{video_id}/transcription/status")
    async def transcription_status(video_id: str, x_user_id: str = Header(default="")):
        _db.get_owned_video(video_id, _requester(x_user_id))
        return transcription.status(video_id)

    @app.get("/videos/{video_id}/transcript")
    async def get_transcript(
        video_id: str, language: str = Query(default=""), x_user_id: str = Header(default=""),
    ):
        _db.get_owned_video(video_id, _requester(x_user_id))
        transcript = transcription.transcript(video_id)
        if transcript is None:
            raise NotFound(f"No transcript found for video {video_id}")
        if isinstance(transcript, t.SingleTranscript):
            return {"kind": "single", **asdict(transcript)}
        if language and language in transcript.transcriptions:
            return {
                "kind": "multilingual",
                "video_id": video_id,
                "language": language,
                "transcript": asdict(transcript.transcriptions[language]),
                "available_languages": transcript.processed_languages,
            }
        return {"kind": "multilingual", **asdict(transcript)}

    @app.get("/transcripts/search")
    async def search_transcripts(q: str = Query(default=""), x_user_id: str = Header(default="")):
        owner = _requester(x_user_id)
        q = _check_query(q)
        results = [
            {"video": _video_out(r["video"]).model_dump(), "matches": r["matches"]}
            for r in transcription.search_text(q)
            if r["video"].owner_id == owner
        ]
        return {"query": q, "results": results}

    @app.get("/languages")
    async def supported_languages():
        return {"supported_languages": transcription.supported_languages()}

    # --- Vision ---

    @app.post("/videos/{video_id}/vision", response_model=StartResponse, status_code=202)
    async def start_vision(video_id: str, x_user_id: str = Header(default="")):
        _db.get_owned_video(video_id, _requester(x_user_id))
        return await vision.start(video_id)

    @app.get("/videos/{video_id}/vision/status")
    async def vision_status(video_id: str, x_user_id: str = Header(default="")):
        _db.get_owned_video(video_id, _requester(x_user_id))
        return vision.status(video_id)

    @app.get("/videos/{video_id}/tags", response_model=list[TagOut])
    async def video_tags(video_id: str, x_user_id: str = Header(default="")):
        _db.get_owned_video(video_id, _requester(x_user_id))
        return [_tag_out(tag) for tag in vision.tags(video_id)]

    @app.get("/tags")
    async def all_tags(x_user_id: str = Header(default="")):
        grouped = queries.tags_by_type(_requester(x_user_id))
        return {"tags": grouped, "total": sum(len(v) for v in grouped.values())}

    @app.get("/tags/stats")
    async def tag_stats(x_user_id: str = Header(default="")):
        return queries.tag_stats(_requester(x_user_id))

    # --- Combined processing and status ---

    @app.post("/videos/{video_id}/process", response_model=ProcessResponse, status_code=202)
    async def process_video(video_id: str, x_user_id: str = Header(default="")):
        _db.get_owned_video(video_id, _requester(x_user_id))
        return await orchestrator.process(video_id)

    @app.get("/videos/{video_id}/status", response_model=StatusResponse)
    async def video_status(video_id: str, x_user_id: str = Header(default="")):
        _db.get_owned_video(video_id, _requester(x_user_id))
        report = queries.get_status(video_id)
        return StatusResponse(
            **asdict(report), is_processing=report.is_processing, is_completed=report.is_completed,
        )

    @app.post("/status")
    async def batch_status(body: StatusBatchRequest, x_user_id: str = Header(default="")):
        return {"statuses": queries.statuses(_requester(x_user_id), body.video_ids)}

    # --- Search ---

    @app.get("/search", response_model=SearchResponse)
    async def search(
        q: str = Query(default=""),
        type_: str = Query(default="", alias="type"),
        x_user_id: str = Header(default=""),
    ):
        owner = _requester(x_user_id)
        q = _check_query(q)
        hits = queries.search(owner, q, tag_type=type_ or None)
        results = [
            SearchResult(
                video=_video_out(h.video),
                relevance_score=h.relevance_score,
                tags=[_tag_out(tag) for tag in h.tags],
            )
            for h in hits
        ]
        return SearchResponse(query=q, type=type_ or "all", results=results, count=len(results))

    @app.get("/search/suggestions")
    async def search_suggestions(q: str = Query(default=""), x_user_id: str = Header(default="")):
        owner = _requester(x_user_id)
        return {"query": q, "suggestions": queries.suggestions(owner, q.strip())}

    return app
