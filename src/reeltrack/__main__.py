import argparse
import logging
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()


def _open_db(path: Path | None):
    from reeltrack import runtime
    from reeltrack.db import Database
    return Database.open(path or runtime.DB_PATH)


async def _process_now(db, video_id: str, workers: int | None) -> dict:
    from reeltrack.orchestrator import Orchestrator
    from reeltrack.stages import TranscriptionStage, VisionStage
    from reeltrack.transcribe import AssemblyAITranscriber
    from reeltrack.vision import ClaudeVisionAnalyzer
    from reeltrack.worker import TaskQueue

    queue = TaskQueue(workers)
    queue.start()
    orchestrator = Orchestrator(
        db,
        TranscriptionStage(db, AssemblyAITranscriber(), queue),
        VisionStage(db, ClaudeVisionAnalyzer(), queue),
    )
    try:
        result = await orchestrator.process(video_id)
        await queue.join()
        await orchestrator.wait()
    finally:
        await queue.stop()
    return result


def main():
    parser = argparse.ArgumentParser(prog="reeltrack")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--workers", type=int, default=None, help="Concurrent stage jobs")

    sub.add_parser("languages", help="List supported transcription languages")

    p_add = sub.add_parser("add", help="Register a video by its playable URL")
    p_add.add_argument("url")
    p_add.add_argument("--owner", required=True)
    p_add.add_argument("--title", default=None)
    p_add.add_argument("--description", default="")

    p_process = sub.add_parser("process", help="Run every pending stage for a video and wait")
    p_process.add_argument("video_id")
    p_process.add_argument("--workers", type=int, default=None)

    p_status = sub.add_parser("status")
    p_status.add_argument("video_id")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from reeltrack import runtime

    if args.command == "serve":
        runtime.require(needs_ffmpeg=True, needs_anthropic=True, needs_assemblyai=True)
        import uvicorn
        from reeltrack import server
        app = server.create_app(workers=args.workers, db_path=args.db)
        uvicorn.run(app, host=args.host, port=args.port)

    elif args.command == "languages":
        from reeltrack.transcribe import SUPPORTED_LANGUAGES
        for code, name in SUPPORTED_LANGUAGES.items():
            print(f"{code:8s} {name}")

    elif args.command == "add":
        db = _open_db(args.db)
        title = args.title or Path(args.url).stem
        video = db.insert_video(args.owner, args.url, title, args.description)
        print(video.video_id)
        db.close()

    elif args.command == "process":
        runtime.require(needs_ffmpeg=True, needs_anthropic=True, needs_assemblyai=True)
        import asyncio
        from reeltrack.exceptions import PipelineError
        from reeltrack.query import QueryService
        db = _open_db(args.db)
        try:
            result = asyncio.run(_process_now(db, args.video_id, args.workers))
            dispatched = [stage for stage, on in result["dispatched"].items() if on]
            print(f"Dispatched: {', '.join(dispatched)}")
            report = QueryService(db).get_status(args.video_id)
            print(f"transcription={report.transcription_status} vision={report.vision_status}")
        except PipelineError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        finally:
            db.close()

    elif args.command == "status":
        from reeltrack.exceptions import NotFound
        from reeltrack.query import QueryService
        db = _open_db(args.db)
        try:
            r = QueryService(db).get_status(args.video_id)
        except NotFound as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        finally:
            db.close()
        print(f"{r.video_id}  {r.title}")
        print(f"  transcription: {r.transcription_status} (transcript: {'yes' if r.has_transcript else 'no'})")
        print(f"  vision:        {r.vision_status} ({r.tag_count} tags)")
        print(f"  processing={r.is_processing} completed={r.is_completed}")

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
