import threading

import pytest

from reeltrack import types as t
from reeltrack.db import Database
from reeltrack.exceptions import ProviderFailure
from reeltrack.transcribe import SUPPORTED_LANGUAGES

SAMPLE_URL = "https://media.example.com/videos/sunset_beach.mp4"


class FakeTranscriber:
    def __init__(self, fail: bool = False, gate: threading.Event | None = None):
        self.fail = fail
        self.gate = gate
        self.calls: list[tuple[str, str]] = []

    def supported_languages(self) -> dict[str, str]:
        return dict(SUPPORTED_LANGUAGES)

    def transcribe(self, media_url: str, language: str) -> t.LanguageResult:
        self.calls.append((media_url, language))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail:
            raise ProviderFailure("transcriber unavailable", provider="fake")
        return t.LanguageResult(
            language=language,
            language_name=SUPPORTED_LANGUAGES.get(language, language),
            text=f"Waves roll over the beach at sunset [{language}]",
            confidence=0.92,
            segments=[
                t.Segment(start_seconds=0.0, end_seconds=2.5, text="Waves roll over the beach"),
                t.Segment(start_seconds=2.5, end_seconds=5.0, text=f"at sunset [{language}]"),
            ],
        )


class FakeAnalyzer:
    def __init__(self, tags: list[t.TagCandidate] | None = None, fail: bool = False,
                 gate: threading.Event | None = None):
        self.tags = tags if tags is not None else [
            t.TagCandidate(label="beach", type="scene", confidence=0.9, timestamp=0.0),
            t.TagCandidate(label="surfboard", type="object", confidence=0.7, timestamp=5.0),
            t.TagCandidate(label="walking", type="action", confidence=None, timestamp=None),
        ]
        self.fail = fail
        self.gate = gate
        self.calls: list[str] = []

    def analyze(self, media_url: str) -> list[t.TagCandidate]:
        self.calls.append(media_url)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail:
            raise RuntimeError("vision backend timed out")
        return list(self.tags)


@pytest.fixture
def db():
    database = Database.memory()
    yield database
    database.close()


@pytest.fixture
def video(db):
    return db.insert_video("alice", SAMPLE_URL, "Sunset Beach", "Evening at the coast")
