"""Stage coordinators: move one video through transcription or vision tagging.

``start`` returns as soon as the stage is claimed (status flipped to
processing); the provider call and persistence run on the task queue.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from reeltrack import runtime, types as t
from reeltrack.db import Database
from reeltrack.exceptions import (
    AlreadyCompleted, AlreadyInProgress, NoValidLanguages, PipelineError, ProviderFailure,
)
from reeltrack.transcribe import AUTO, Transcriber, filter_supported
from reeltrack.vision import Analyzer
from reeltrack.worker import ShutdownError, TaskQueue

logger = logging.getLogger(__name__)


class _Stage:
    stage: str
    provider_name: str

    def __init__(self, db: Database, queue: TaskQueue):
        self._db = db
        self._queue = queue

    def _claim(self, video: t.Video, allow_completed: bool) -> None:
        allowed = (t.PENDING, t.FAILED) + ((t.COMPLETED,) if allow_completed else ())
        if self._db.claim_stage(video.video_id, self.stage, allowed):
            return
        current = self._db.get_video(video.video_id).stage_status(self.stage)
        if current == t.COMPLETED:
            raise AlreadyCompleted(f"{self.stage.capitalize()} already completed for {video.video_id}")
        raise AlreadyInProgress(f"{self.stage.capitalize()} already in progress for {video.video_id}")

    async def _call_provider(self, fn: Callable[..., Any], *args) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except PipelineError:
            raise
        except Exception as exc:
            raise ProviderFailure(f"{type(exc).__name__}: {exc}", provider=self.provider_name) from exc

    def _mark_failed(self, video_id: str, exc: BaseException) -> None:
        logger.warning("[%s] %s failed: %s", video_id, self.stage, exc)
        self._db.set_stage_status(video_id, self.stage, t.FAILED)

    def _dispatch(self, video_id: str, run: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        try:
            return self._queue.submit(
                f"{video_id}:{self.stage}", run,
                on_error=lambda exc: self._mark_failed(video_id, exc),
            )
        except ShutdownError as exc:
            self._mark_failed(video_id, exc)
            raise


class TranscriptionStage(_Stage):
    stage = t.TRANSCRIPTION
    provider_name = "transcription"

    def __init__(self, db: Database, transcriber: Transcriber, queue: TaskQueue,
                 default_language: str | None = None):
        super().__init__(db, queue)
        self._transcriber = transcriber
        self.default_language = default_language or runtime.DEFAULT_LANGUAGE

    def supported_languages(self) -> dict[str, str]:
        return self._transcriber.supported_languages()

    def _mark_failed(self, video_id: str, exc: BaseException) -> None:
        super()._mark_failed(video_id, exc)
        self._db.set_transcript_processing_status(video_id, t.FAILED)

    async def start(self, video_id: str, languages: str | list[str] | None = None) -> dict:
        accepted, _ = self.launch(video_id, languages)
        return accepted

    def launch(
        self, video_id: str, languages: str | list[str] | None = None,
    ) -> tuple[dict, asyncio.Future]:
        """Claim the stage and queue the provider call; the future resolves when it ends."""
        video = self._db.get_video(video_id)
        if isinstance(languages, (list, tuple, set)):
            return self._start_multilingual(video, list(languages))
        return self._start_single(video, languages or self.default_language)

    def _start_single(self, video: t.Video, language: str) -> tuple[dict, asyncio.Future]:
        supported = self.supported_languages()
        if language != AUTO and language not in supported:
            raise NoValidLanguages(f"Unsupported language: {language}", supported)

        existing = self._db.get_transcript(video.video_id)
        same = isinstance(existing, t.SingleTranscript) and existing.language == language
        self._claim(video, allow_completed=not same)
        if existing is not None and not same:
            self._db.delete_transcript(video.video_id)
        logger.info("[%s] Transcription started (%s)", video.video_id, language)

        async def run() -> t.SingleTranscript:
            result = await self._call_provider(self._transcriber.transcribe, video.url, language)
            transcript = t.SingleTranscript(
                video_id=video.video_id, language=language,
                text=result.text, segments=result.segments,
            )
            self._db.save_single_transcript(transcript)
            self._db.set_stage_status(video.video_id, self.stage, t.COMPLETED)
            logger.info("[%s] Transcribed (%d segments)", video.video_id, len(result.segments))
            return transcript

        accepted = {"status": t.PROCESSING, "video_id": video.video_id, "language": language}
        return accepted, self._dispatch(video.video_id, run)

    def _start_multilingual(self, video: t.Video, languages: list[str]) -> tuple[dict, asyncio.Future]:
        supported = self.supported_languages()
        valid = filter_supported(languages, supported)
        if not valid:
            raise NoValidLanguages("No valid languages specified", supported)
        dropped = [lang for lang in languages if lang not in valid]
        if dropped:
            logger.info("[%s] Ignoring unsupported languages: %s", video.video_id, ", ".join(dropped))

        existing = self._db.get_transcript(video.video_id)
        processed = existing.processed_languages if isinstance(existing, t.MultilingualTranscript) else []
        same = bool(processed) and set(valid) <= set(processed)
        self._claim(video, allow_completed=not same)
        if isinstance(existing, t.SingleTranscript):
            self._db.delete_transcript(video.video_id)
        elif existing is not None:
            self._db.set_transcript_processing_status(video.video_id, t.PROCESSING)
        to_run = [lang for lang in valid if lang not in processed] or valid
        logger.info("[%s] Multilingual transcription started (%s)", video.video_id, ", ".join(to_run))

        async def run() -> t.MultilingualTranscript:
            results = await asyncio.gather(*[
                self._call_provider(self._transcriber.transcribe, video.url, lang) for lang in to_run
            ])
            merged = self._db.merge_multilingual_transcript(
                video.video_id, {lang: r for lang, r in zip(to_run, results)},
            )
            self._db.set_stage_status(video.video_id, self.stage, t.COMPLETED)
            logger.info("[%s] Transcribed languages: %s", video.video_id, ", ".join(merged.processed_languages))
            return merged

        accepted = {"status": t.PROCESSING, "video_id": video.video_id, "languages": valid}
        return accepted, self._dispatch(video.video_id, run)

    def status(self, video_id: str) -> dict:
        video = self._db.get_video(video_id)
        return {
            "video_id": video_id,
            "status": video.transcription_status,
            "has_transcript": self._db.has_transcript(video_id),
        }

    def transcript(self, video_id: str) -> t.Transcript | None:
        return self._db.get_transcript(video_id)

    def search_text(self, query: str) -> list[dict]:
        """Substring search over every stored transcript; callers filter by owner."""
        needle = query.casefold()
        results = []
        for video, transcript in self._db.search_transcripts(query):
            if isinstance(transcript, t.SingleTranscript):
                pairs = [(transcript.language, s) for s in transcript.segments]
            else:
                pairs = [(lang, s) for lang, r in transcript.transcriptions.items() for s in r.segments]
            matches = [
                {"language": lang, "text": s.text, "start": s.start_seconds, "end": s.end_seconds}
                for lang, s in pairs if needle in s.text.casefold()
            ]
            results.append({"video": video, "matches": matches})
        return results


class VisionStage(_Stage):
    stage = t.VISION
    provider_name = "vision"

    def __init__(self, db: Database, analyzer: Analyzer, queue: TaskQueue):
        super().__init__(db, queue)
        self._analyzer = analyzer

    async def start(self, video_id: str) -> dict:
        accepted, _ = self.launch(video_id)
        return accepted

    def launch(self, video_id: str) -> tuple[dict, asyncio.Future]:
        video = self._db.get_video(video_id)
        self._claim(video, allow_completed=False)
        logger.info("[%s] Vision analysis started", video.video_id)

        async def run() -> int:
            candidates = await self._call_provider(self._analyzer.analyze, video.url)
            count = self._db.replace_tags(video.video_id, candidates)
            self._db.set_stage_status(video.video_id, self.stage, t.COMPLETED)
            logger.info("[%s] Tagged (%d tags)", video.video_id, count)
            return count

        return {"status": t.PROCESSING, "video_id": video.video_id}, self._dispatch(video.video_id, run)

    def status(self, video_id: str) -> dict:
        video = self._db.get_video(video_id)
        return {
            "video_id": video_id,
            "status": video.vision_status,
            "tag_count": self._db.count_tags(video_id),
        }

    def tags(self, video_id: str) -> list[t.Tag]:
        return self._db.list_tags(video_id)
