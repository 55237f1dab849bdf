import pytest

from reeltrack import types as t
from reeltrack.exceptions import NotFound
from reeltrack.query import QueryService, relevance

from conftest import SAMPLE_URL


@pytest.fixture
def queries(db):
    return QueryService(db)


def _add(db, title, owner="alice", description="", uploaded_at="2024-01-01T00:00:00+00:00",
         text=None, tags=()):
    video = db.insert_video(owner, SAMPLE_URL, title, description, uploaded_at=uploaded_at)
    if text is not None:
        db.save_single_transcript(t.SingleTranscript(video_id=video.video_id, language="en-US", text=text))
    if tags:
        db.replace_tags(video.video_id, list(tags))
    return video


def _scores(hits):
    return [(h.video.title, h.relevance_score) for h in hits]


def test_title_match_scores_at_least_ten(db, queries):
    _add(db, "Sunset Beach")
    [hit] = queries.search("alice", "beach")
    assert hit.relevance_score >= 10


def test_field_weights(db, queries):
    _add(db, "Coastline", description="A quiet beach walk", text="we reached the beach")
    [hit] = queries.search("alice", "BEACH")
    assert hit.relevance_score == pytest.approx(5 + 3)


def test_tag_only_match_scales_with_confidence(db, queries):
    _add(db, "Holiday", tags=[t.TagCandidate(label="beach", type="scene", confidence=0.8)])
    [hit] = queries.search("alice", "beach")
    assert hit.relevance_score == pytest.approx(1.6)


def test_tag_without_confidence_counts_half(db, queries):
    _add(db, "Holiday", tags=[t.TagCandidate(label="beach umbrella", type="object")])
    [hit] = queries.search("alice", "beach")
    assert hit.relevance_score == pytest.approx(1.0)


def test_each_matching_tag_adds_points(db, queries):
    _add(db, "Holiday", tags=[
        t.TagCandidate(label="beach", type="scene", confidence=0.9),
        t.TagCandidate(label="beach ball", type="object", confidence=0.5),
        t.TagCandidate(label="dog", type="object", confidence=1.0),
    ])
    [hit] = queries.search("alice", "beach")
    assert hit.relevance_score == pytest.approx(1.8 + 1.0)


def test_results_ordered_by_score(db, queries):
    _add(db, "Holiday", tags=[t.TagCandidate(label="beach", type="scene", confidence=0.8)])
    _add(db, "Beach Day")
    _add(db, "Weekend", description="Down at the beach")
    _add(db, "Mountains")

    assert _scores(queries.search("alice", "beach")) == [
        ("Beach Day", 10.0), ("Weekend", 5.0), ("Holiday", pytest.approx(1.6)),
    ]


def test_ties_broken_by_upload_date(db, queries):
    _add(db, "Beach one", uploaded_at="2024-01-01T00:00:00+00:00")
    _add(db, "Beach two", uploaded_at="2024-03-01T00:00:00+00:00")
    _add(db, "Beach three", uploaded_at="2024-02-01T00:00:00+00:00")

    assert [h.video.title for h in queries.search("alice", "beach")] == [
        "Beach two", "Beach three", "Beach one",
    ]


def test_type_filter_only_matches_tags_of_that_type(db, queries):
    _add(db, "Beach walk")
    _add(db, "Toys", tags=[t.TagCandidate(label="beach ball", type="object", confidence=0.6)])
    _add(db, "Coast", tags=[t.TagCandidate(label="beach", type="scene", confidence=0.9)])

    hits = queries.search("alice", "beach", tag_type="object")
    assert _scores(hits) == [("Toys", pytest.approx(1.2))]


def test_type_filter_still_scores_text_fields(db, queries):
    _add(db, "Beach toys", tags=[
        t.TagCandidate(label="beach ball", type="object", confidence=0.5),
        t.TagCandidate(label="beach", type="scene", confidence=1.0),
    ])
    [hit] = queries.search("alice", "beach", tag_type="object")
    assert hit.relevance_score == pytest.approx(10 + 1.0)


def test_type_all_means_no_filter(db, queries):
    _add(db, "Beach walk")
    assert len(queries.search("alice", "beach", tag_type="all")) == 1


def test_search_is_scoped_to_owner(db, queries):
    _add(db, "Beach mine")
    _add(db, "Beach theirs", owner="bob")
    assert [h.video.title for h in queries.search("alice", "beach")] == ["Beach mine"]


def test_relevance_ignores_missing_fields():
    video = t.Video(video_id="v", owner_id="alice", url=SAMPLE_URL, title="Untitled")
    assert relevance(video, None, [], "beach") == 0.0


def test_status_report(db, queries):
    video = _add(db, "Sunset Beach", text="hello", tags=[t.TagCandidate(label="sun", type="object")])
    db.set_stage_status(video.video_id, t.TRANSCRIPTION, t.COMPLETED)
    db.set_stage_status(video.video_id, t.VISION, t.PROCESSING)

    report = queries.get_status(video.video_id)
    assert report.has_transcript
    assert report.tag_count == 1
    assert report.is_processing
    assert not report.is_completed

    db.set_stage_status(video.video_id, t.VISION, t.COMPLETED)
    report = queries.get_status(video.video_id)
    assert not report.is_processing
    assert report.is_completed


def test_status_of_deleted_video(db, queries):
    video = _add(db, "Gone")
    db.delete_video(video.video_id)
    with pytest.raises(NotFound):
        queries.get_status(video.video_id)


def test_batch_statuses(db, queries):
    video = _add(db, "Sunset Beach", text="hello", tags=[t.TagCandidate(label="sun", type="object")])
    other = _add(db, "Bob's", owner="bob")

    statuses = queries.statuses("alice", [video.video_id, other.video_id])

    assert list(statuses) == [video.video_id]
    entry = statuses[video.video_id]
    assert entry["transcription"]["has_transcript"] is True
    assert entry["vision"]["has_tags"] is True
    assert entry["vision"]["status"] == t.PENDING


def test_suggestions_mix_tags_and_transcript_words(db, queries):
    _add(db, "Clip", text="Lighthouse keepers light the lamp", tags=[
        t.TagCandidate(label="lighthouse", type="object", confidence=0.9),
        t.TagCandidate(label="sea", type="scene", confidence=0.7),
    ])

    suggestions = queries.suggestions("alice", "light")
    assert {"text": "lighthouse", "type": "tag", "category": "object"} in suggestions
    words = [s["text"] for s in suggestions if s["type"] == "transcript"]
    assert words == ["lighthouse", "light"]
    assert all("sea" != s["text"] for s in suggestions)


def test_suggestions_capped(db, queries):
    _add(db, "Clip", text=" ".join(f"word{i:02d}" for i in range(30)), tags=[
        t.TagCandidate(label=f"tag{i}", type="object", confidence=0.5) for i in range(12)
    ])
    assert len(queries.suggestions("alice")) == 15


def test_tags_by_type(db, queries):
    _add(db, "Clip", tags=[
        t.TagCandidate(label="lighthouse", type="object", confidence=0.9),
        t.TagCandidate(label="sea", type="scene", confidence=0.7),
    ])
    grouped = queries.tags_by_type("alice")
    assert grouped == {
        "object": [{"label": "lighthouse", "confidence": 0.9}],
        "scene": [{"label": "sea", "confidence": 0.7}],
    }
