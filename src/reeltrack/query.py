"""Read side: per-video status, relevance-scored search and suggestions.

Nothing here starts work or writes to the store.
"""

import re

from reeltrack import types as t
from reeltrack.db import Database

TITLE_WEIGHT = 10.0
DESCRIPTION_WEIGHT = 5.0
TRANSCRIPT_WEIGHT = 3.0
TAG_WEIGHT = 2.0
DEFAULT_TAG_CONFIDENCE = 0.5

MAX_SUGGESTIONS = 15

_WORD = re.compile(r"\b\w{4,}\b")


def tag_points(tag: t.Tag) -> float:
    confidence = tag.confidence if tag.confidence is not None else DEFAULT_TAG_CONFIDENCE
    return confidence * TAG_WEIGHT


def relevance(
    video: t.Video, transcript_text: str | None, tags: list[t.Tag], query: str,
    tag_type: str | None = None,
) -> float:
    q = query.lower()
    score = 0.0
    if q in video.title.lower():
        score += TITLE_WEIGHT
    if video.description and q in video.description.lower():
        score += DESCRIPTION_WEIGHT
    if transcript_text and q in transcript_text.lower():
        score += TRANSCRIPT_WEIGHT
    for tag in tags:
        if tag_type and tag.type != tag_type:
            continue
        if q in tag.label.lower():
            score += tag_points(tag)
    return score


def matching_tags(tags: list[t.Tag], query: str, tag_type: str | None = None) -> list[t.Tag]:
    q = query.lower()
    return [tg for tg in tags if q in tg.label.lower() and (not tag_type or tg.type == tag_type)]


def matches(
    video: t.Video, transcript_text: str | None, tags: list[t.Tag], query: str,
    tag_type: str | None = None,
) -> bool:
    """With a tag type only tags of that type can match; otherwise any field can."""
    if matching_tags(tags, query, tag_type):
        return True
    if tag_type:
        return False
    q = query.lower()
    return (
        q in video.title.lower()
        or q in (video.description or "").lower()
        or q in (transcript_text or "").lower()
    )


class QueryService:
    def __init__(self, db: Database):
        self._db = db

    def get_status(self, video_id: str) -> t.StatusReport:
        video = self._db.get_video(video_id)
        return t.StatusReport(
            video_id=video.video_id,
            title=video.title,
            transcription_status=video.transcription_status,
            vision_status=video.vision_status,
            tag_count=self._db.count_tags(video_id),
            has_transcript=self._db.has_transcript(video_id),
        )

    def statuses(self, owner_id: str, video_ids: list[str]) -> dict[str, dict]:
        return {
            row["id"]: {
                "transcription": {
                    "status": row["transcription_status"],
                    "has_transcript": row["transcript_created_at"] is not None,
                    "transcript_created_at": row["transcript_created_at"],
                },
                "vision": {
                    "status": row["vision_status"],
                    "has_tags": row["tag_count"] > 0,
                    "tags_created_at": row["tags_created_at"],
                },
            }
            for row in self._db.stage_summaries(owner_id, video_ids)
        }

    def search(self, owner_id: str, query: str, tag_type: str | None = None) -> list[t.SearchHit]:
        if tag_type == "all":
            tag_type = None
        hits = []
        for video, text, tags in self._db.search_candidates(owner_id):
            if not matches(video, text, tags, query, tag_type):
                continue
            hits.append(t.SearchHit(
                video=video,
                relevance_score=relevance(video, text, tags, query, tag_type),
                tags=tags,
            ))
        hits.sort(key=lambda h: h.video.uploaded_at, reverse=True)
        hits.sort(key=lambda h: h.relevance_score, reverse=True)
        return hits

    def suggestions(self, owner_id: str, query: str = "") -> list[dict]:
        q = query.lower()
        out = [
            {"text": row["label"], "type": "tag", "category": row["type"]}
            for row in self._db.distinct_tags(owner_id, limit=10, contains=q)
        ]
        words: list[str] = []
        for _, text, _ in self._db.search_candidates(owner_id):
            if not text or (q and q not in text.lower()):
                continue
            for word in _WORD.findall(text.lower()):
                if (not q or q in word) and word not in words:
                    words.append(word)
        out.extend({"text": w, "type": "transcript", "category": "word"} for w in words[:10])
        return out[:MAX_SUGGESTIONS]

    def tag_stats(self, owner_id: str) -> dict:
        return self._db.tag_stats(owner_id)

    def tags_by_type(self, owner_id: str) -> dict[str, list[dict]]:
        grouped: dict[str, list[dict]] = {}
        for row in self._db.distinct_tags(owner_id):
            grouped.setdefault(row["type"], []).append(
                {"label": row["label"], "confidence": row["confidence"]}
            )
        return grouped
