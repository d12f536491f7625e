from typing import Optional
from pydantic import BaseModel
from .models import Job, TaskKind

class Event(BaseModel):
    """Base class for all domain events."""
    pass

class JobEvent(Event):
    job: Job

class JobStarted(JobEvent):
    pass

class TaskStarted(JobEvent):
    task: TaskKind

class TaskProgress(JobEvent):
    """Intra-task progress reported by ffmpeg. Transient, never persisted."""
    task: TaskKind
    percent: float

class JobProgressUpdated(JobEvent):
    progress_percent: int

class JobCompleted(JobEvent):
    pass

class JobFailed(JobEvent):
    error_message: str
    task: Optional[TaskKind] = None

class WorkerBackoff(Event):
    reason: str
    delay_seconds: float

class WorkerStopped(Event):
    jobs_handled: int
