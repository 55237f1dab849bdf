import asyncio
import logging

from reeltrack import types as t
from reeltrack.db import Database
from reeltrack.exceptions import AlreadyCompleted, AlreadyInProgress, NothingToProcess
from reeltrack.stages import TranscriptionStage, VisionStage

logger = logging.getLogger(__name__)

_IDLE = (t.PENDING, t.FAILED)


class Orchestrator:
    """Starts every stage of a video that has not run yet, without waiting for any of them."""

    def __init__(self, db: Database, transcription: TranscriptionStage, vision: VisionStage):
        self._db = db
        self._transcription = transcription
        self._vision = vision
        self._watchers: set[asyncio.Task] = set()

    async def process(self, video_id: str) -> dict:
        video = self._db.get_video(video_id)
        dispatched = {t.TRANSCRIPTION: False, t.VISION: False}
        futures: dict[str, asyncio.Future] = {}

        if video.transcription_status in _IDLE:
            try:
                _, futures[t.TRANSCRIPTION] = self._transcription.launch(video_id)
                dispatched[t.TRANSCRIPTION] = True
            except (AlreadyInProgress, AlreadyCompleted):
                logger.info("[%s] Transcription claimed elsewhere, skipping", video_id)

        if video.vision_status in _IDLE:
            try:
                _, futures[t.VISION] = self._vision.launch(video_id)
                dispatched[t.VISION] = True
            except (AlreadyInProgress, AlreadyCompleted):
                logger.info("[%s] Vision claimed elsewhere, skipping", video_id)

        if not futures:
            raise NothingToProcess(f"Video processing already completed or in progress for {video_id}")

        watcher = asyncio.create_task(self._report(video_id, futures))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return {"video_id": video_id, "dispatched": dispatched}

    async def _report(self, video_id: str, futures: dict[str, asyncio.Future]) -> None:
        outcomes = await asyncio.gather(*futures.values(), return_exceptions=True)
        summary = ", ".join(
            f"{stage}={'failed' if isinstance(o, BaseException) else 'completed'}"
            for stage, o in zip(futures, outcomes)
        )
        logger.info("[%s] Processing finished: %s", video_id, summary)

    async def wait(self) -> None:
        if self._watchers:
            await asyncio.gather(*self._watchers, return_exceptions=True)
