import subprocess
import re
import logging
import time
from collections import deque
from pathlib import Path
from typing import Callable, List, Optional
from mediaworker.config.models import MediaConfig
from mediaworker.domain.errors import ProcessStartError, ProcessExitError, CorruptOutputError

ProgressCallback = Callable[[float], None]

# Matches both 'time=00:00:05.00' (stats) and 'out_time=00:00:05.000000' (-progress)
TIME_REGEX = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")
# Other '-progress' lines: frame=12, speed=1.2x, progress=continue ...
PROGRESS_KEY_REGEX = re.compile(r"^\w+=\S*\s*$")


class FFmpegAdapter:
    """Wrapper around ffmpeg for thumbnails and transcodes.

    Every operation is one blocking ffmpeg process. Progress is reported
    best-effort through the optional callback as a percent of the known
    input duration. Re-running with the same job id overwrites the same file.
    """

    def __init__(self, config: MediaConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

    def _base_command(self, input_path: Path, seek: Optional[float] = None) -> List[str]:
        cmd = [
            self.config.ffmpeg_path,
            "-y",  # Overwrite output files
            "-v", "error",
            "-nostats",
            "-progress", "pipe:1",
        ]
        if seek is not None:
            cmd.extend(["-ss", f"{seek:.3f}"])
        cmd.extend(["-i", str(input_path)])
        return cmd

    def _thumbnail_command(self, input_path: Path, output_path: Path, duration: float) -> List[str]:
        width, height = self.config.thumbnail_size.split("x")
        cmd = self._base_command(input_path, seek=max(0.0, duration * self.config.thumbnail_position))
        cmd.extend([
            "-frames:v", "1",
            "-vf", f"scale={width}:{height}",
            str(output_path),
        ])
        return cmd

    def _audio_command(self, input_path: Path, output_path: Path) -> List[str]:
        cmd = self._base_command(input_path)
        cmd.extend([
            "-vn",
            "-c:a", self.config.audio_codec,
            "-b:a", self.config.audio_bitrate,
            str(output_path),
        ])
        return cmd

    def _video_filter(self) -> str:
        width = self.config.video_width
        if self.config.video_height:
            height = self.config.video_height
            return (
                f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
                f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
            )
        # Height follows the source aspect ratio, rounded to an even number
        return f"scale={width}:-2"

    def _video_command(self, input_path: Path, output_path: Path) -> List[str]:
        cmd = self._base_command(input_path)
        cmd.extend([
            "-vf", self._video_filter(),
            "-c:v", self.config.video_codec,
            "-b:v", self.config.video_bitrate,
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", self.config.audio_bitrate,
            "-movflags", "+faststart",
            str(output_path),
        ])
        return cmd

    def _run(self, cmd: List[str], output_path: Path, duration: float,
             progress: Optional[ProgressCallback] = None) -> Path:
        """Runs one ffmpeg process to completion and validates its output."""
        name = output_path.name
        start_time = time.monotonic()
        self.logger.debug(f"FFMPEG_START: {name} cmd={' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                errors="replace",
                bufsize=1
            )
        except OSError as e:
            raise ProcessStartError(f"Could not start ffmpeg ({self.config.ffmpeg_path}): {e}") from e

        # Last diagnostic lines, for the error message
        tail = deque(maxlen=20)
        last_percent = -1
        finished = False
        try:
            for line in process.stdout:
                match = TIME_REGEX.search(line)
                if match:
                    if progress and duration > 0:
                        h, m, s = map(float, match.groups())
                        current_seconds = h * 3600 + m * 60 + s
                        percent = min(100.0, current_seconds / duration * 100)
                        if int(percent) > last_percent:
                            last_percent = int(percent)
                            progress(percent)
                elif line.strip() and not PROGRESS_KEY_REGEX.match(line):
                    tail.append(line.rstrip())
            finished = True
        finally:
            if not finished:
                # Reader failed (progress callback, decoding): do not leave ffmpeg behind
                process.kill()
                process.wait()

        process.wait()
        elapsed = time.monotonic() - start_time

        if process.returncode != 0:
            self.logger.debug(f"FFMPEG_END: {name} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise ProcessExitError("ffmpeg", process.returncode, "\n".join(tail))

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise CorruptOutputError(f"ffmpeg finished but {name} is missing or empty")

        self.logger.debug(f"FFMPEG_END: {name} status=completed elapsed={elapsed:.2f}s")
        if progress:
            progress(100.0)
        return output_path

    def extract_thumbnail(self, input_path: Path, output_dir: Path, job_id: str, duration: float,
                          progress: Optional[ProgressCallback] = None) -> Path:
        """Grabs one frame at thumbnail_position of the duration as {id}_thumbnail.jpg."""
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{job_id}_thumbnail.jpg"
        cmd = self._thumbnail_command(input_path, output_path, duration)
        # A single frame has no meaningful timeline progress
        return self._run(cmd, output_path, 0.0, progress)

    def transcode_audio(self, input_path: Path, output_dir: Path, job_id: str, duration: float,
                        progress: Optional[ProgressCallback] = None) -> Path:
        """Converts to {id}_converted.mp3 at the configured codec and bitrate."""
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{job_id}_converted.mp3"
        return self._run(self._audio_command(input_path, output_path), output_path, duration, progress)

    def transcode_video(self, input_path: Path, output_dir: Path, job_id: str, duration: float,
                        progress: Optional[ProgressCallback] = None) -> Path:
        """Compresses to {id}_compressed.mp4 (H.264/AAC, fixed width)."""
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{job_id}_compressed.mp4"
        return self._run(self._video_command(input_path, output_path), output_path, duration, progress)
