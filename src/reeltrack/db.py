"""SQLite store for videos, transcripts and tags.

Videos are the aggregate root: transcripts (one per video) and tags (many per
video) are removed with their video through ``ON DELETE CASCADE``.
"""

import json
import sqlite3
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from reeltrack import types as t
from reeltrack.exceptions import NotFound, VideoExists

MIGRATIONS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER NOT NULL,
        applied_at TEXT DEFAULT (datetime('now'))
    );

    CREATE TABLE IF NOT EXISTS videos (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        url TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        uploaded_at TEXT NOT NULL,
        transcription_status TEXT NOT NULL DEFAULT 'pending'
            CHECK (transcription_status IN ('pending', 'processing', 'completed', 'failed')),
        vision_status TEXT NOT NULL DEFAULT 'pending'
            CHECK (vision_status IN ('pending', 'processing', 'completed', 'failed'))
    );
    CREATE INDEX IF NOT EXISTS idx_videos_owner ON videos(owner_id, uploaded_at);

    CREATE TABLE IF NOT EXISTS transcripts (
        id TEXT PRIMARY KEY,
        video_id TEXT NOT NULL UNIQUE REFERENCES videos(id) ON DELETE CASCADE,
        kind TEXT NOT NULL CHECK (kind IN ('single', 'multilingual')),
        language TEXT,
        text TEXT NOT NULL DEFAULT '',
        segments_json TEXT NOT NULL DEFAULT '[]',
        transcriptions_json TEXT NOT NULL DEFAULT '{}',
        processed_languages_json TEXT NOT NULL DEFAULT '[]',
        processing_status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT DEFAULT (datetime('now')),
        updated_at TEXT DEFAULT (datetime('now'))
    );

    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        video_id TEXT NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
        label TEXT NOT NULL,
        type TEXT NOT NULL,
        confidence REAL,
        timestamp REAL,
        created_at TEXT DEFAULT (datetime('now'))
    );
    CREATE INDEX IF NOT EXISTS idx_tags_video ON tags(video_id);
    """,
]

_VIDEO_ALIASES = ", ".join(
    f"v.{col} AS v_{col}"
    for col in ("id", "owner_id", "url", "title", "description", "uploaded_at",
                "transcription_status", "vision_status")
)

_STAGE_COLUMNS = {
    t.TRANSCRIPTION: "transcription_status",
    t.VISION: "vision_status",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _stage_column(stage: str) -> str:
    try:
        return _STAGE_COLUMNS[stage]
    except KeyError:
        raise ValueError(f"Unknown stage: {stage}") from None


def _segments_from_json(raw: list[dict]) -> list[t.Segment]:
    return [t.Segment(**s) for s in raw]


def _result_from_json(raw: dict) -> t.LanguageResult:
    return t.LanguageResult(
        language=raw["language"],
        language_name=raw.get("language_name", raw["language"]),
        text=raw.get("text", ""),
        confidence=raw.get("confidence"),
        segments=_segments_from_json(raw.get("segments", [])),
    )


def _video_from_row(row: sqlite3.Row, prefix: str = "") -> t.Video:
    return t.Video(
        video_id=row[prefix + "id"],
        owner_id=row[prefix + "owner_id"],
        url=row[prefix + "url"],
        title=row[prefix + "title"],
        description=row[prefix + "description"],
        uploaded_at=row[prefix + "uploaded_at"],
        transcription_status=row[prefix + "transcription_status"],
        vision_status=row[prefix + "vision_status"],
    )


def _tag_from_row(row: sqlite3.Row) -> t.Tag:
    return t.Tag(
        tag_id=row["id"],
        video_id=row["video_id"],
        label=row["label"],
        type=row["type"],
        confidence=row["confidence"],
        timestamp=row["timestamp"],
        created_at=row["created_at"],
    )


def _transcript_from_row(row: sqlite3.Row) -> t.Transcript:
    if row["kind"] == "single":
        return t.SingleTranscript(
            video_id=row["video_id"],
            language=row["language"],
            text=row["text"],
            segments=_segments_from_json(json.loads(row["segments_json"])),
        )
    transcriptions = {
        lang: _result_from_json(raw)
        for lang, raw in json.loads(row["transcriptions_json"]).items()
    }
    return t.MultilingualTranscript(
        video_id=row["video_id"],
        transcriptions=transcriptions,
        processed_languages=json.loads(row["processed_languages_json"]),
        processing_status=row["processing_status"],
    )


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open a connection with WAL mode and foreign keys enabled.

    Registers ``casefold()`` so substring filters fold case for all of
    Unicode; SQLite's own ``lower()`` only folds ASCII.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def migrate(conn: sqlite3.Connection) -> int:
    """Apply pending migrations, returning the resulting schema version."""
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        current = row[0] or 0
    except sqlite3.OperationalError:
        current = 0
    for version, script in enumerate(MIGRATIONS, start=1):
        if version <= current:
            continue
        conn.executescript(script)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
        current = version
    return current


class Database:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        migrate(self.conn)

    @classmethod
    def open(cls, db_path: Path | str) -> "Database":
        return cls(connect(db_path))

    @classmethod
    def memory(cls) -> "Database":
        return cls.open(":memory:")

    def close(self) -> None:
        self.conn.close()

    # --- Videos ---

    def insert_video(
        self, owner_id: str, url: str, title: str, description: str = "",
        video_id: str | None = None, uploaded_at: str | None = None,
    ) -> t.Video:
        vid = video_id or uuid.uuid4().hex
        try:
            self.conn.execute(
                """INSERT INTO videos (id, owner_id, url, title, description, uploaded_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (vid, owner_id, url, title, description or "", uploaded_at or _now()),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            raise VideoExists(f"Video already exists: {vid}") from e
        return self.get_video(vid)

    def get_video(self, video_id: str) -> t.Video:
        row = self.conn.execute("SELECT * FROM videos WHERE id = ?", (video_id,)).fetchone()
        if not row:
            raise NotFound(f"Video not found: {video_id}")
        return _video_from_row(row)

    def get_owned_video(self, video_id: str, owner_id: str) -> t.Video:
        video = self.get_video(video_id)
        if video.owner_id != owner_id:
            raise NotFound(f"Video not found: {video_id}")
        return video

    def list_videos(self, owner_id: str) -> list[t.Video]:
        rows = self.conn.execute(
            "SELECT * FROM videos WHERE owner_id = ? ORDER BY uploaded_at DESC", (owner_id,),
        ).fetchall()
        return [_video_from_row(r) for r in rows]

    def delete_video(self, video_id: str) -> None:
        cur = self.conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
        self.conn.commit()
        if cur.rowcount == 0:
            raise NotFound(f"Video not found: {video_id}")

    # --- Stage status ---

    def claim_stage(self, video_id: str, stage: str, allowed_from: tuple[str, ...]) -> bool:
        """Flip a stage to processing only if its current status is in ``allowed_from``.

        Check and write happen in one statement, so of two concurrent claims
        at most one sees its row updated.
        """
        if not allowed_from:
            return False
        col = _stage_column(stage)
        placeholders = ", ".join("?" for _ in allowed_from)
        cur = self.conn.execute(
            f"UPDATE videos SET {col} = ? WHERE id = ? AND {col} IN ({placeholders})",
            (t.PROCESSING, video_id, *allowed_from),
        )
        self.conn.commit()
        return cur.rowcount == 1

    def set_stage_status(self, video_id: str, stage: str, status: str) -> None:
        if status not in t.STATUSES:
            raise ValueError(f"Invalid status: {status}")
        col = _stage_column(stage)
        self.conn.execute(f"UPDATE videos SET {col} = ? WHERE id = ?", (status, video_id))
        self.conn.commit()

    # --- Transcripts ---

    def get_transcript(self, video_id: str) -> t.Transcript | None:
        row = self.conn.execute(
            "SELECT * FROM transcripts WHERE video_id = ?", (video_id,),
        ).fetchone()
        return _transcript_from_row(row) if row else None

    def has_transcript(self, video_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM transcripts WHERE video_id = ?", (video_id,),
        ).fetchone()
        return row is not None

    def delete_transcript(self, video_id: str) -> None:
        self.conn.execute("DELETE FROM transcripts WHERE video_id = ?", (video_id,))
        self.conn.commit()

    def set_transcript_processing_status(self, video_id: str, status: str) -> None:
        self.conn.execute(
            """UPDATE transcripts SET processing_status = ?, updated_at = ?
               WHERE video_id = ? AND kind = 'multilingual'""",
            (status, _now(), video_id),
        )
        self.conn.commit()

    def save_single_transcript(self, transcript: t.SingleTranscript) -> None:
        segments = json.dumps([asdict(s) for s in transcript.segments])
        with self.conn:
            self.conn.execute("DELETE FROM transcripts WHERE video_id = ?", (transcript.video_id,))
            self.conn.execute(
                """INSERT INTO transcripts (id, video_id, kind, language, text, segments_json,
                   processing_status, created_at, updated_at)
                   VALUES (?, ?, 'single', ?, ?, ?, ?, ?, ?)""",
                (uuid.uuid4().hex, transcript.video_id, transcript.language, transcript.text,
                 segments, t.COMPLETED, _now(), _now()),
            )

    def merge_multilingual_transcript(
        self, video_id: str, results: dict[str, t.LanguageResult],
    ) -> t.MultilingualTranscript:
        """Upsert per-language results, keeping languages stored by earlier runs."""
        existing = self.get_transcript(video_id)
        merged = t.MultilingualTranscript(video_id=video_id, processing_status=t.COMPLETED)
        if isinstance(existing, t.MultilingualTranscript):
            merged.transcriptions.update(existing.transcriptions)
            merged.processed_languages.extend(existing.processed_languages)
        merged.transcriptions.update(results)
        for lang in results:
            if lang not in merged.processed_languages:
                merged.processed_languages.append(lang)

        transcriptions = json.dumps({lang: asdict(r) for lang, r in merged.transcriptions.items()})
        with self.conn:
            if isinstance(existing, t.SingleTranscript):
                self.conn.execute("DELETE FROM transcripts WHERE video_id = ?", (video_id,))
            self.conn.execute(
                """INSERT INTO transcripts (id, video_id, kind, text, transcriptions_json,
                   processed_languages_json, processing_status, created_at, updated_at)
                   VALUES (?, ?, 'multilingual', ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(video_id) DO UPDATE SET
                       kind = excluded.kind,
                       text = excluded.text,
                       transcriptions_json = excluded.transcriptions_json,
                       processed_languages_json = excluded.processed_languages_json,
                       processing_status = excluded.processing_status,
                       updated_at = excluded.updated_at""",
                (uuid.uuid4().hex, video_id, merged.full_text(), transcriptions,
                 json.dumps(merged.processed_languages), merged.processing_status, _now(), _now()),
            )
        return merged

    def search_transcripts(self, query: str) -> list[tuple[t.Video, t.Transcript]]:
        """Case-insensitive substring match over all stored transcripts, any owner."""
        rows = self.conn.execute(
            f"""SELECT tr.*, {_VIDEO_ALIASES} FROM transcripts tr
               JOIN videos v ON v.id = tr.video_id
               WHERE instr(casefold(tr.text), casefold(?)) > 0
               ORDER BY v.uploaded_at DESC""",
            (query,),
        ).fetchall()
        return [(_video_from_row(r, prefix="v_"), _transcript_from_row(r)) for r in rows]

    # --- Tags ---

    def replace_tags(self, video_id: str, candidates: list[t.TagCandidate]) -> int:
        with self.conn:
            self.conn.execute("DELETE FROM tags WHERE video_id = ?", (video_id,))
            self.conn.executemany(
                """INSERT INTO tags (id, video_id, label, type, confidence, timestamp, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [
                    (uuid.uuid4().hex, video_id, c.label, c.type, c.confidence, c.timestamp, _now())
                    for c in candidates
                ],
            )
        return len(candidates)

    def list_tags(self, video_id: str) -> list[t.Tag]:
        rows = self.conn.execute(
            """SELECT * FROM tags WHERE video_id = ?
               ORDER BY confidence IS NULL, confidence DESC, timestamp""",
            (video_id,),
        ).fetchall()
        return [_tag_from_row(r) for r in rows]

    def count_tags(self, video_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM tags WHERE video_id = ?", (video_id,),
        ).fetchone()
        return row[0]

    def tag_stats(self, owner_id: str, top: int = 20) -> dict:
        by_type = self.conn.execute(
            """SELECT tg.type, COUNT(*) AS cnt FROM tags tg
               JOIN videos v ON v.id = tg.video_id
               WHERE v.owner_id = ? GROUP BY tg.type ORDER BY cnt DESC""",
            (owner_id,),
        ).fetchall()
        top_rows = self.conn.execute(
            """SELECT tg.label, tg.type, tg.confidence FROM tags tg
               JOIN videos v ON v.id = tg.video_id
               WHERE v.owner_id = ?
               ORDER BY tg.confidence IS NULL, tg.confidence DESC LIMIT ?""",
            (owner_id, top),
        ).fetchall()
        return {
            "by_type": {r["type"]: r["cnt"] for r in by_type},
            "top_tags": [dict(r) for r in top_rows],
        }

    def distinct_tags(self, owner_id: str, limit: int = 100, contains: str = "") -> list[dict]:
        rows = self.conn.execute(
            """SELECT tg.label, tg.type, MAX(tg.confidence) AS confidence FROM tags tg
               JOIN videos v ON v.id = tg.video_id
               WHERE v.owner_id = ? AND (? = '' OR instr(casefold(tg.label), casefold(?)) > 0)
               GROUP BY tg.label
               ORDER BY confidence IS NULL, confidence DESC LIMIT ?""",
            (owner_id, contains, contains, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    # --- Read models ---

    def search_candidates(self, owner_id: str) -> list[tuple[t.Video, str | None, list[t.Tag]]]:
        """Every video of an owner with its transcript text and tags."""
        videos = self.list_videos(owner_id)
        texts = {
            r["video_id"]: r["text"]
            for r in self.conn.execute(
                """SELECT tr.video_id, tr.text FROM transcripts tr
                   JOIN videos v ON v.id = tr.video_id WHERE v.owner_id = ?""",
                (owner_id,),
            ).fetchall()
        }
        tags: dict[str, list[t.Tag]] = {}
        for r in self.conn.execute(
            """SELECT tg.* FROM tags tg JOIN videos v ON v.id = tg.video_id
               WHERE v.owner_id = ?
               ORDER BY tg.confidence IS NULL, tg.confidence DESC""",
            (owner_id,),
        ).fetchall():
            tags.setdefault(r["video_id"], []).append(_tag_from_row(r))
        return [(v, texts.get(v.video_id), tags.get(v.video_id, [])) for v in videos]

    def stage_summaries(self, owner_id: str, video_ids: list[str]) -> list[dict]:
        if not video_ids:
            return []
        placeholders = ", ".join("?" for _ in video_ids)
        rows = self.conn.execute(
            f"""SELECT v.id, v.transcription_status, v.vision_status,
                       (SELECT created_at FROM transcripts WHERE video_id = v.id) AS transcript_created_at,
                       (SELECT COUNT(*) FROM tags WHERE video_id = v.id) AS tag_count,
                       (SELECT MIN(created_at) FROM tags WHERE video_id = v.id) AS tags_created_at
                FROM videos v
                WHERE v.owner_id = ? AND v.id IN ({placeholders})""",
            (owner_id, *video_ids),
        ).fetchall()
        return [dict(r) for r in rows]
