from dataclasses import dataclass, field

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

STATUSES = frozenset({PENDING, PROCESSING, COMPLETED, FAILED})

TRANSCRIPTION = "transcription"
VISION = "vision"


@dataclass
class Video:
    video_id: str
    owner_id: str
    url: str
    title: str
    description: str = ""
    uploaded_at: str = ""
    transcription_status: str = PENDING
    vision_status: str = PENDING

    def stage_status(self, stage: str) -> str:
        return self.transcription_status if stage == TRANSCRIPTION else self.vision_status


@dataclass
class Segment:
    start_seconds: float
    end_seconds: float
    text: str
    speaker: str | None = None
    confidence: float | None = None


@dataclass
class LanguageResult:
    language: str
    language_name: str
    text: str
    confidence: float | None = None
    segments: list[Segment] = field(default_factory=list)


@dataclass
class SingleTranscript:
    video_id: str
    language: str
    text: str
    segments: list[Segment] = field(default_factory=list)

    def full_text(self) -> str:
        return self.text


@dataclass
class MultilingualTranscript:
    video_id: str
    transcriptions: dict[str, LanguageResult] = field(default_factory=dict)
    processed_languages: list[str] = field(default_factory=list)
    processing_status: str = PENDING

    def full_text(self) -> str:
        return "\n".join(r.text for r in self.transcriptions.values() if r.text)


Transcript = SingleTranscript | MultilingualTranscript


@dataclass
class TagCandidate:
    label: str
    type: str
    confidence: float | None = None
    timestamp: float | None = None


@dataclass
class Tag:
    tag_id: str
    video_id: str
    label: str
    type: str
    confidence: float | None = None
    timestamp: float | None = None
    created_at: str = ""


@dataclass
class StatusReport:
    video_id: str
    title: str
    transcription_status: str
    vision_status: str
    tag_count: int
    has_transcript: bool

    @property
    def is_processing(self) -> bool:
        return PROCESSING in (self.transcription_status, self.vision_status)

    @property
    def is_completed(self) -> bool:
        return self.transcription_status == COMPLETED and self.vision_status == COMPLETED


@dataclass
class SearchHit:
    video: Video
    relevance_score: float
    tags: list[Tag] = field(default_factory=list)
