import subprocess
import json
import re
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from mediaworker.domain.errors import ProcessStartError, ProcessExitError, CorruptOutputError
from mediaworker.domain.models import MediaMetadata, VideoStreamInfo, AudioStreamInfo

_RATIONAL = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)\s*$")
_NUMBER = re.compile(r"^\s*\d+(?:\.\d+)?\s*$")


def parse_frame_rate(value: Optional[str]) -> float:
    """Parses an ffprobe rational such as "30000/1001" by plain division.

    "0/0" (unknown rate) gives 0.0. Anything that is not a non-negative
    rational or number raises ValueError.
    """
    if value is None:
        return 0.0
    text = str(value)
    match = _RATIONAL.match(text)
    if match:
        num, den = float(match.group(1)), float(match.group(2))
        if den == 0:
            return 0.0
        return num / den
    if _NUMBER.match(text):
        return float(text)
    raise ValueError(f"Malformed frame rate: {text!r}")


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


class FFprobeAdapter:
    """Wrapper around ffprobe to extract container and stream information."""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path
        self.logger = logging.getLogger(__name__)

    def _run(self, file_path: Path) -> Dict[str, Any]:
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
        except OSError as e:
            raise ProcessStartError(f"Could not start ffprobe ({self.ffprobe_path}): {e}") from e

        if result.returncode != 0:
            raise ProcessExitError("ffprobe", result.returncode, result.stderr)

        try:
            data = json.loads(result.stdout)
        except (json.JSONDecodeError, TypeError) as e:
            raise CorruptOutputError(f"ffprobe returned invalid JSON for {file_path}: {e}") from e
        if not isinstance(data, dict) or "format" not in data:
            raise CorruptOutputError(f"ffprobe found no container information in {file_path}")
        return data

    def probe(self, file_path: Path) -> MediaMetadata:
        """Executes ffprobe and maps its JSON output onto MediaMetadata."""
        data = self._run(file_path)
        fmt = data.get("format", {})
        streams = data.get("streams", [])

        # Cover art in audio files shows up as a video stream with attached_pic
        video_stream = next(
            (s for s in streams
             if s.get("codec_type") == "video" and not s.get("disposition", {}).get("attached_pic")),
            None
        )
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if video_stream is None and audio_stream is None:
            raise CorruptOutputError(f"No audio or video stream found in {file_path}")

        duration = fmt.get("duration")
        if duration is None:
            duration = (video_stream or audio_stream).get("duration", 0.0)

        video = None
        if video_stream is not None:
            try:
                fps = parse_frame_rate(video_stream.get("r_frame_rate") or video_stream.get("avg_frame_rate"))
            except ValueError as e:
                raise CorruptOutputError(str(e)) from e
            video = VideoStreamInfo(
                codec=video_stream.get("codec_name", "unknown"),
                width=int(video_stream.get("width", 0)),
                height=int(video_stream.get("height", 0)),
                fps=fps,
            )

        audio = None
        if audio_stream is not None:
            audio = AudioStreamInfo(
                codec=audio_stream.get("codec_name", "unknown"),
                channels=int(audio_stream.get("channels", 0)),
                sample_rate=_int_or_none(audio_stream.get("sample_rate")),
            )

        return MediaMetadata(
            duration=float(duration),
            format=fmt.get("format_name", "unknown"),
            size=_int_or_none(fmt.get("size")),
            bitrate=_int_or_none(fmt.get("bit_rate")),
            video=video,
            audio=audio,
        )
