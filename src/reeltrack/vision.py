import base64
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from reeltrack import frames, runtime, types as t
from reeltrack.exceptions import ProviderFailure

logger = logging.getLogger(__name__)

PROMPT = """You are tagging a video for search. The images are frames sampled from it, each preceded by its timestamp in seconds.

Return 10-15 tags describing what is visible: objects, scenes, actions, people, text and overall mood.
Respond with ONLY a JSON array of objects with these keys:
  "label": short lowercase phrase
  "type": one of "object", "scene", "action", "person", "text", "emotion"
  "confidence": number between 0 and 1
  "timestamp": seconds of the frame where it is most visible

Example: [{"label": "beach", "type": "scene", "confidence": 0.9, "timestamp": 5}]"""

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


@runtime_checkable
class Analyzer(Protocol):
    def analyze(self, media_url: str) -> list[t.TagCandidate]: ...


def parse_tags(text: str) -> list[t.TagCandidate]:
    match = _JSON_ARRAY.search(text)
    if not match:
        raise ProviderFailure("Vision reply contained no JSON array", provider="anthropic")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ProviderFailure(f"Vision reply was not valid JSON: {exc}", provider="anthropic") from exc

    tags = []
    for item in raw:
        if not isinstance(item, dict) or not str(item.get("label", "")).strip():
            continue
        confidence = item.get("confidence")
        if isinstance(confidence, (int, float)):
            confidence = min(max(float(confidence), 0.0), 1.0)
        else:
            confidence = None
        timestamp = item.get("timestamp")
        tags.append(t.TagCandidate(
            label=str(item["label"]).strip().lower(),
            type=str(item.get("type") or "general").strip().lower(),
            confidence=confidence,
            timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else None,
        ))
    return tags


class ClaudeVisionAnalyzer:
    def __init__(
        self, api_key: str | None = None, model: str | None = None,
        frame_interval: float | None = None, max_frames: int | None = None,
    ):
        import anthropic
        self._client = anthropic.Anthropic(api_key=api_key or os.environ["ANTHROPIC_API_KEY"])
        self._model = model or runtime.VISION_MODEL
        self._interval = frame_interval or runtime.FRAME_INTERVAL
        self._max_frames = max_frames or runtime.MAX_FRAMES

    def analyze(self, media_url: str) -> list[t.TagCandidate]:
        duration = frames.probe_duration(media_url)
        if duration is None:
            logger.warning("Could not read duration of %s, sampling from the start", media_url)
        timestamps = frames.sample_timestamps(self._interval, self._max_frames, duration)
        with tempfile.TemporaryDirectory(prefix="reeltrack_frames_") as tmp:
            paths = frames.extract(media_url, timestamps, Path(tmp))
            content: list[dict] = []
            for ts, path in zip(timestamps, paths):
                if path is None:
                    continue
                content.append({"type": "text", "text": f"Frame at {ts:.0f}s:"})
                content.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/jpeg",
                        "data": base64.b64encode(path.read_bytes()).decode("ascii"),
                    },
                })
        if not content:
            raise ProviderFailure(f"No frames could be extracted from {media_url}", provider="ffmpeg")
        content.append({"type": "text", "text": PROMPT})

        logger.info("Tagging %d frames with %s", len(content) // 2, self._model)
        try:
            resp = self._client.messages.create(
                model=self._model,
                max_tokens=1024,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as exc:
            raise ProviderFailure(f"Claude request failed: {exc}", provider="anthropic") from exc
        return parse_tags(resp.content[0].text)
