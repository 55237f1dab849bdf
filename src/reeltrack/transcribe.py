import os
from typing import Protocol, runtime_checkable

from reeltrack import types as t
from reeltrack.exceptions import ProviderFailure

AUTO = "auto"

SUPPORTED_LANGUAGES = {
    "en-US": "English (US)",
    "fr": "French",
    "de": "German",
    "ja": "Japanese",
    "es": "Spanish",
    "ru": "Russian",
    "ko": "Korean",
    "hi": "Hindi",
}

# Our language codes -> AssemblyAI language_code values
_VENDOR_CODES = {
    "en-US": "en_us",
    "fr": "fr",
    "de": "de",
    "ja": "ja",
    "es": "es",
    "ru": "ru",
    "ko": "ko",
    "hi": "hi",
}


@runtime_checkable
class Transcriber(Protocol):
    def transcribe(self, media_url: str, language: str) -> t.LanguageResult: ...
    def supported_languages(self) -> dict[str, str]: ...


def filter_supported(languages: list[str], supported: dict[str, str]) -> list[str]:
    """Keep supported codes in request order, dropping unknowns and duplicates."""
    seen: list[str] = []
    for lang in languages:
        if lang in supported and lang not in seen:
            seen.append(lang)
    return seen


class AssemblyAITranscriber:
    def __init__(self, api_key: str | None = None):
        import assemblyai as aai
        aai.settings.api_key = api_key or os.environ["ASSEMBLYAI_API_KEY"]
        self._aai = aai

    def supported_languages(self) -> dict[str, str]:
        return dict(SUPPORTED_LANGUAGES)

    def _config(self, language: str):
        options = dict(
            speech_model=self._aai.SpeechModel.best,
            punctuate=True,
            format_text=True,
            speaker_labels=True,
        )
        if language == AUTO:
            options["language_detection"] = True
        else:
            options["language_code"] = _VENDOR_CODES[language]
        return self._aai.TranscriptionConfig(**options)

    def transcribe(self, media_url: str, language: str) -> t.LanguageResult:
        if language != AUTO and language not in _VENDOR_CODES:
            raise ProviderFailure(f"Unsupported language: {language}", provider="assemblyai")
        try:
            transcript = self._aai.Transcriber().transcribe(media_url, config=self._config(language))
        except Exception as exc:
            raise ProviderFailure(f"AssemblyAI request failed: {exc}", provider="assemblyai") from exc
        if transcript.status == self._aai.TranscriptStatus.error:
            raise ProviderFailure(f"AssemblyAI transcription failed: {transcript.error}", provider="assemblyai")

        segments = []
        for utt in transcript.utterances or []:
            text = utt.text.strip()
            if not text:
                continue
            segments.append(t.Segment(
                start_seconds=utt.start / 1000.0,
                end_seconds=utt.end / 1000.0,
                text=text,
                speaker=getattr(utt, "speaker", None),
                confidence=getattr(utt, "confidence", None),
            ))
        if not segments and transcript.words:
            segments = self._segments_from_words(transcript.words)

        code = language
        if language == AUTO:
            detected = (getattr(transcript, "json_response", None) or {}).get("language_code")
            code = detected or AUTO
        return t.LanguageResult(
            language=code,
            language_name=SUPPORTED_LANGUAGES.get(code, code),
            text=(transcript.text or "").strip(),
            confidence=getattr(transcript, "confidence", None),
            segments=segments,
        )

    def _segments_from_words(self, words, max_gap_ms: int = 1500) -> list[t.Segment]:
        chunks: list[list] = [[]]
        for w in words:
            if chunks[-1] and w.start - chunks[-1][-1].end > max_gap_ms:
                chunks.append([])
            chunks[-1].append(w)
        segments = []
        for chunk in chunks:
            if not chunk:
                continue
            text = " ".join(w.text for w in chunk).strip()
            if not text:
                continue
            segments.append(t.Segment(
                start_seconds=chunk[0].start / 1000.0,
                end_seconds=chunk[-1].end / 1000.0,
                text=text,
            ))
        return segments
