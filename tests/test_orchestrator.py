import asyncio

import pytest

from reeltrack import types as t
from reeltrack.exceptions import NothingToProcess
from reeltrack.orchestrator import Orchestrator
from reeltrack.stages import TranscriptionStage, VisionStage
from reeltrack.worker import TaskQueue

from conftest import FakeAnalyzer, FakeTranscriber


def _process(db, video_id, transcriber=None, analyzer=None):
    async def scenario():
        queue = TaskQueue(workers=2)
        queue.start()
        orchestrator = Orchestrator(
            db,
            TranscriptionStage(db, transcriber or FakeTranscriber(), queue, default_language="en-US"),
            VisionStage(db, analyzer or FakeAnalyzer(), queue),
        )
        try:
            result = await orchestrator.process(video_id)
            await queue.join()
            await orchestrator.wait()
        finally:
            await queue.stop()
        return result

    return asyncio.run(scenario())


def test_pending_video_dispatches_both_stages(db, video):
    result = _process(db, video.video_id)

    assert result == {"video_id": video.video_id, "dispatched": {"transcription": True, "vision": True}}
    done = db.get_video(video.video_id)
    assert done.transcription_status == t.COMPLETED
    assert done.vision_status == t.COMPLETED
    assert db.has_transcript(video.video_id)
    assert db.count_tags(video.video_id) == 3


def test_only_idle_stages_are_dispatched(db, video):
    db.set_stage_status(video.video_id, t.TRANSCRIPTION, t.COMPLETED)
    db.set_stage_status(video.video_id, t.VISION, t.FAILED)
    transcriber = FakeTranscriber()

    result = _process(db, video.video_id, transcriber=transcriber)

    assert result["dispatched"] == {"transcription": False, "vision": True}
    assert transcriber.calls == []
    assert db.get_video(video.video_id).vision_status == t.COMPLETED


def test_nothing_to_process(db, video):
    db.set_stage_status(video.video_id, t.TRANSCRIPTION, t.COMPLETED)
    db.set_stage_status(video.video_id, t.VISION, t.PROCESSING)

    with pytest.raises(NothingToProcess):
        _process(db, video.video_id)


def test_processing_twice_raises_after_completion(db, video):
    _process(db, video.video_id)
    with pytest.raises(NothingToProcess):
        _process(db, video.video_id)


def test_stage_failures_are_independent(db, video):
    _process(db, video.video_id, transcriber=FakeTranscriber(fail=True))

    done = db.get_video(video.video_id)
    assert done.transcription_status == t.FAILED
    assert done.vision_status == t.COMPLETED

    # Only the failed stage is picked up again.
    result = _process(db, video.video_id)
    assert result["dispatched"] == {"transcription": True, "vision": False}
    assert db.get_video(video.video_id).transcription_status == t.COMPLETED
