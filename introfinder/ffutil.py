"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import re
import shutil
import struct
import subprocess
from pathlib import Path

from introfinder.models import BlackFrame, Chapter, ProbeResult, TimeRange

logger = logging.getLogger(__name__)


class FFmpegNotFoundError(RuntimeError):
    pass


class NoAudioStreamError(ValueError):
    """Raised when the input file has no audio stream."""
    pass


class FingerprintError(RuntimeError):
    """Raised when ffmpeg cannot produce a chromaprint fingerprint."""
    pass


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def has_chromaprint() -> bool:
    """Return True if the local ffmpeg build ships the chromaprint muxer."""
    cmd = ["ffmpeg", "-hide_banner", "-muxers"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("Unable to list ffmpeg muxers: %s", e)
        return False
    return re.search(r"\schromaprint\s", result.stdout) is not None


def parse_chapters(data: dict) -> list[Chapter]:
    """Convert the ``chapters`` list of ffprobe JSON output into Chapters."""
    chapters: list[Chapter] = []
    for ch in data.get("chapters", []):
        try:
            start = float(ch["start_time"])
        except (KeyError, TypeError, ValueError):
            continue
        title = (ch.get("tags") or {}).get("title")
        chapters.append(Chapter(start=start, title=title))
    chapters.sort(key=lambda c: c.start)
    return chapters


def probe(input_path: Path) -> ProbeResult:
    """Extract duration, audio presence and chapters via ffprobe."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        "-show_chapters",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    data = json.loads(result.stdout)

    audio_stream = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "audio"), None
    )

    return ProbeResult(
        duration=float(data["format"]["duration"]),
        has_audio=audio_stream is not None,
        chapters=parse_chapters(data),
    )


def decode_fingerprint(raw: bytes) -> list[int]:
    """Decode ffmpeg's raw chromaprint output (little-endian uint32 points)."""
    count = len(raw) // 4
    return list(struct.unpack(f"<{count}I", raw[: count * 4]))


def fingerprint(input_path: Path, start: float, duration: float) -> list[int]:
    """Compute the raw chromaprint of ``duration`` seconds of audio from ``start``."""
    if duration <= 0:
        raise FingerprintError(f"Refusing to fingerprint {duration}s of audio in {input_path}")

    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel", "error",
        "-ss", f"{start:.3f}",
        "-i", str(input_path),
        "-t", f"{duration:.3f}",
        "-vn", "-sn", "-dn",
        "-ac", "2",
        "-f", "chromaprint",
        "-fp_format", "raw",
        "-",
    ]
    result = subprocess.run(cmd, capture_output=True)

    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        raise FingerprintError(
            f"ffmpeg chromaprint failed for {input_path} (rc={result.returncode}): {stderr[-300:]}"
        )

    points = decode_fingerprint(result.stdout)
    if not points:
        raise FingerprintError(f"ffmpeg returned an empty fingerprint for {input_path}")
    return points


def parse_black_frames(stderr: str, min_percentage: int, offset: float = 0.0) -> list[BlackFrame]:
    """Parse blackframe filter output into BlackFrames.

    Frames darker than ``min_percentage`` are kept. ``offset`` is added to
    every timestamp so that times are relative to the start of the file.
    """
    frames: list[BlackFrame] = []
    for m in re.finditer(r"pblack:(\d+)\s.*?\bt:([\d.]+)", stderr):
        percentage = int(m.group(1))
        if percentage < min_percentage:
            continue
        frames.append(BlackFrame(percentage=percentage, time=float(m.group(2)) + offset))
    return frames


def detect_black_frames(
    input_path: Path, time_range: TimeRange, min_percentage: int
) -> list[BlackFrame]:
    """Run the blackframe filter over ``time_range`` and return dark frames."""
    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-ss", f"{max(time_range.start, 0.0):.3f}",
        "-i", str(input_path),
        "-t", f"{time_range.duration:.3f}",
        "-an", "-dn", "-sn",
        "-vf", "blackframe=amount=50",
        "-f", "null", "-",
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)

    if result.returncode != 0 and not result.stderr:
        raise RuntimeError(
            f"ffmpeg blackframe failed (rc={result.returncode}) with no output"
        )

    return parse_black_frames(result.stderr, min_percentage, offset=max(time_range.start, 0.0))


def parse_silence_ranges(stderr: str, duration: float | None = None) -> list[TimeRange]:
    """Parse silencedetect output from ffmpeg stderr into TimeRanges.

    If a silence_start has no matching silence_end (silence extends to EOF),
    ``duration`` is used as the end time. If ``duration`` is also None the
    unpaired start is dropped.
    """
    starts = [float(m) for m in re.findall(r"silence_start: (-?[\d.]+)", stderr)]
    ends = [float(m) for m in re.findall(r"silence_end: (-?[\d.]+)", stderr)]

    ranges: list[TimeRange] = []
    for i, start in enumerate(starts):
        if i < len(ends):
            ranges.append(TimeRange(start=start, end=ends[i]))
        elif duration is not None:
            # Unpaired silence_start: silence extends to EOF
            ranges.append(TimeRange(start=start, end=duration))
    return ranges


def detect_silence(
    input_path: Path,
    threshold_db: float,
    min_duration: float,
    time_range: TimeRange | None = None,
) -> list[TimeRange]:
    """Run FFmpeg silencedetect and return silent time ranges.

    When *time_range* is given only that window is decoded; returned ranges
    are still relative to the start of the file, and trailing silence that
    runs past the window is capped at its end.
    """
    cmd = ["ffmpeg", "-hide_banner"]
    offset = 0.0
    window: float | None = None
    if time_range is not None:
        offset = max(time_range.start, 0.0)
        window = time_range.end - offset
        cmd += ["-ss", f"{offset:.3f}", "-i", str(input_path), "-t", f"{window:.3f}"]
    else:
        cmd += ["-i", str(input_path)]
    cmd += [
        "-vn", "-sn", "-dn",
        "-af", f"silencedetect=noise={threshold_db}dB:d={min_duration}",
        "-f", "null", "-",
    ]
    result = subprocess.run(cmd, capture_output=True, text=True)

    if result.returncode != 0 and not result.stderr:
        raise RuntimeError(
            f"ffmpeg silencedetect failed (rc={result.returncode}) with no output"
        )

    ranges = parse_silence_ranges(result.stderr, duration=window)
    return [TimeRange(start=r.start + offset, end=r.end + offset) for r in ranges]
