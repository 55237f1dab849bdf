import subprocess
from pathlib import Path


def probe_duration(source: str | Path) -> float | None:
    """Container duration in seconds from ffprobe, or ``None`` when it can't be read."""
    result = subprocess.run(
        ["ffprobe", "-v", "error", "-show_entries", "format=duration",
         "-of", "default=noprint_wrappers=1:nokey=1", str(source)],
        capture_output=True, text=True,
    )
    if result.returncode != 0:
        return None
    try:
        duration = float(result.stdout.strip())
    except ValueError:
        return None
    return duration if duration > 0 else None


def sample_timestamps(interval: float, max_frames: int, duration: float | None = None) -> list[float]:
    """Every ``interval`` seconds from the start, or ``max_frames`` evenly spread
    midpoints when the video is longer than that window covers."""
    if max_frames <= 0:
        return []
    if duration is None:
        return [i * interval for i in range(max_frames)]
    if duration <= interval * max_frames:
        return [i * interval for i in range(max_frames) if i * interval < duration]
    step = duration / max_frames
    return [round(step * (i + 0.5), 3) for i in range(max_frames)]


def extract(source: str | Path, timestamps: list[float], output_dir: Path) -> list[Path | None]:
    """Grab one JPEG per timestamp; ``None`` where ffmpeg produced nothing (e.g. past the end)."""
    output_dir.mkdir(parents=True, exist_ok=True)
    paths: list[Path | None] = []
    for ts in timestamps:
        out = output_dir / f"{int(ts * 1000):09d}.jpg"
        result = subprocess.run(
            ["ffmpeg", "-ss", str(ts), "-i", str(source),
             "-frames:v", "1", "-q:v", "2", "-y", str(out)],
            capture_output=True,
        )
        if result.returncode != 0 or not out.exists() or out.stat().st_size == 0:
            out.unlink(missing_ok=True)
            paths.append(None)
        else:
            paths.append(out)
    return paths
