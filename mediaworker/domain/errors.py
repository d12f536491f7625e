from typing import Optional


class MediaWorkerError(Exception):
    """Base class for all worker errors."""


class ConfigError(MediaWorkerError):
    pass


class UnsupportedMediaError(MediaWorkerError):
    """Declared content type is neither audio nor video."""


class InvalidTransitionError(MediaWorkerError):
    pass


class CorruptPayloadError(MediaWorkerError):
    """A queue entry or stored record could not be decoded."""


class MediaEngineError(MediaWorkerError):
    """Base class for ffmpeg/ffprobe failures. Fails a single job."""


class ProcessStartError(MediaEngineError):
    """The external binary could not be launched."""


class ProcessExitError(MediaEngineError):
    def __init__(self, tool: str, returncode: int, stderr: Optional[str] = None):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr or ""
        message = f"{tool} exited with code {returncode}"
        tail = self.stderr.strip().splitlines()[-1:] if self.stderr.strip() else []
        if tail:
            message += f": {tail[0]}"
        super().__init__(message)


class CorruptOutputError(MediaEngineError):
    """The process succeeded but produced missing or unparsable output."""


class InfrastructureError(MediaWorkerError):
    """Queue or store unavailable. Stalls the worker loop, never fails a job."""


class QueueUnavailableError(InfrastructureError):
    pass


class StoreUnavailableError(InfrastructureError):
    pass
