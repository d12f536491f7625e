from datetime import datetime
from typing import Iterable, Optional
from rich.console import Console
from rich.table import Table
from mediaworker.domain.models import Job, JobStatus
from mediaworker.pipeline.worker import WorkerStats

STATUS_STYLES = {
    JobStatus.QUEUED: "dim",
    JobStatus.PROCESSING: "yellow",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def format_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def format_size(size_bytes: Optional[int]) -> str:
    if size_bytes is None:
        return "-"
    if size_bytes < 1024:
        return f"{size_bytes}B"
    size = size_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}GB"


def status_text(job: Job) -> str:
    style = STATUS_STYLES[job.status]
    return f"[{style}]{job.status.value}[/{style}]"


def jobs_table(jobs: Iterable[Job]) -> Table:
    table = Table(title="Jobs", expand=False)
    table.add_column("ID", no_wrap=True)
    table.add_column("File")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Created")
    table.add_column("Error", overflow="fold")
    for job in jobs:
        table.add_row(
            job.id,
            job.file_name or job.source_path.name,
            job.media_kind.value,
            status_text(job),
            f"{job.progress}%",
            format_time(job.created_at),
            job.error or "",
        )
    return table


def job_table(job: Job) -> Table:
    """Key/value view of one record, the shape status collaborators report."""
    table = Table(title=f"Job {job.id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value", overflow="fold")

    table.add_row("Status", status_text(job))
    table.add_row("Progress", f"{job.progress}%")
    table.add_row("Source", str(job.source_path))
    table.add_row("Kind", job.media_kind.value)
    table.add_row("Size", format_size(job.file_size))
    table.add_row("Created", format_time(job.created_at))
    table.add_row("Started", format_time(job.started_at))
    table.add_row("Completed", format_time(job.completed_at))
    if job.processing_time_ms is not None:
        table.add_row("Processing time", f"{job.processing_time_ms / 1000:.1f}s")

    if job.metadata:
        meta = job.metadata
        table.add_row("Duration", f"{meta.duration:.2f}s")
        table.add_row("Format", meta.format)
        if meta.video:
            v = meta.video
            table.add_row("Video", f"{v.codec} {v.width}x{v.height} @ {v.fps:.2f}fps")
        if meta.audio:
            a = meta.audio
            table.add_row("Audio", f"{a.codec} {a.channels}ch {a.sample_rate or '-'}Hz")

    for name, path in job.artifacts.written().items():
        table.add_row(name.replace("_", " ").capitalize(), str(path))
    if job.error:
        table.add_row("Error", f"[red]{job.error}[/red]")
    return table


def stats_table(stats: WorkerStats) -> Table:
    table = Table(title="Worker stats", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Queue length", str(stats.queue_length))
    table.add_row("Active jobs", str(stats.active_jobs))
    return table


def print_jobs(jobs: Iterable[Job], console: Optional[Console] = None):
    (console or Console()).print(jobs_table(jobs))


def print_job(job: Job, console: Optional[Console] = None):
    (console or Console()).print(job_table(job))
