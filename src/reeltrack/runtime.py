import os
import shutil
import sys
from pathlib import Path

import dotenv

dotenv.load_dotenv()

CACHE_DIR = Path(os.environ.get("REELTRACK_CACHE_DIR", Path.home() / ".cache" / "reeltrack"))
DB_PATH = Path(os.environ.get("REELTRACK_DB_PATH", CACHE_DIR / "reeltrack.db"))
STAGE_WORKERS = int(os.environ.get("REELTRACK_STAGE_WORKERS", "4"))
VISION_MODEL = os.environ.get("REELTRACK_VISION_MODEL", "claude-sonnet-4-5-20250929")
FRAME_INTERVAL = float(os.environ.get("REELTRACK_FRAME_INTERVAL", "5"))
MAX_FRAMES = int(os.environ.get("REELTRACK_MAX_FRAMES", "8"))
DEFAULT_LANGUAGE = os.environ.get("REELTRACK_DEFAULT_LANGUAGE", "auto")


def _check_binary(name: str) -> bool:
    return shutil.which(name) is not None


def _check_anthropic_key() -> bool:
    return bool(os.environ.get("ANTHROPIC_API_KEY"))


def _check_assemblyai_key() -> bool:
    return bool(os.environ.get("ASSEMBLYAI_API_KEY"))


def check(
    needs_ffmpeg: bool = False, needs_anthropic: bool = False, needs_assemblyai: bool = False,
) -> list[str]:
    errors = []

    if needs_ffmpeg:
        for binary in ("ffmpeg", "ffprobe"):
            if not _check_binary(binary):
                errors.append(f"{binary} not found in PATH, install from https://ffmpeg.org/")

    if needs_anthropic and not _check_anthropic_key():
        errors.append("ANTHROPIC_API_KEY not set, add it to .env or export it")

    if needs_assemblyai and not _check_assemblyai_key():
        errors.append("ASSEMBLYAI_API_KEY not set, add it to .env or export it")

    return errors


def require(
    needs_ffmpeg: bool = False, needs_anthropic: bool = False, needs_assemblyai: bool = False,
):
    errors = check(
        needs_ffmpeg=needs_ffmpeg, needs_anthropic=needs_anthropic,
        needs_assemblyai=needs_assemblyai,
    )
    if errors:
        print("Missing requirements:", file=sys.stderr)
        for e in errors:
            print(f"  - {e}", file=sys.stderr)
        sys.exit(1)
