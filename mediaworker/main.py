import mimetypes
import signal
import typer
from pathlib import Path
from typing import Optional, Tuple

import redis
from pydantic import ValidationError
from rich.console import Console

from mediaworker.config.loader import load_config
from mediaworker.config.models import AppConfig
from mediaworker.infrastructure.logging import setup_logging
from mediaworker.infrastructure.event_bus import EventBus
from mediaworker.infrastructure.queue import JobQueue, RedisJobQueue, MemoryJobQueue
from mediaworker.infrastructure.store import JobStore, RedisJobStore, MemoryJobStore
from mediaworker.infrastructure.ffprobe import FFprobeAdapter
from mediaworker.infrastructure.ffmpeg import FFmpegAdapter
from mediaworker.pipeline.orchestrator import Orchestrator
from mediaworker.pipeline.worker import Worker
from mediaworker.ui.progress import ProgressLogger
from mediaworker.ui.status import print_job, print_jobs, stats_table
from mediaworker.domain.errors import MediaWorkerError, InfrastructureError
from mediaworker.domain.models import Job, JobDescriptor

app = typer.Typer(help="Media job worker: probes, thumbnails and transcodes queued uploads.")
console = Console()

ConfigOption = typer.Option(Path("conf/mediaworker.yaml"), "--config", "-c", help="Path to YAML config")


def build_backends(config: AppConfig) -> Tuple[JobQueue, JobStore]:
    """Creates the queue and store for the configured backend."""
    if config.queue.backend == "memory":
        return MemoryJobQueue(), MemoryJobStore(processing_ttl=config.store.processing_ttl)

    client = redis.Redis.from_url(config.queue.redis_url, decode_responses=True)
    queue = RedisJobQueue(client, key=config.queue.queue_key)
    store = RedisJobStore(client, key_prefix=config.store.key_prefix, processing_ttl=config.store.processing_ttl)
    return queue, store


def build_worker(config: AppConfig, queue: JobQueue, store: JobStore, bus: Optional[EventBus] = None) -> Worker:
    bus = bus or EventBus()
    orchestrator = Orchestrator(
        config=config,
        event_bus=bus,
        store=store,
        ffprobe_adapter=FFprobeAdapter(config.media.ffprobe_path),
        ffmpeg_adapter=FFmpegAdapter(config.media),
    )
    return Worker(
        queue=queue,
        store=store,
        orchestrator=orchestrator,
        event_bus=bus,
        config=config.worker,
        poll_timeout=config.queue.poll_timeout,
    )


def _load(config_path: Optional[Path], debug: bool = False) -> AppConfig:
    try:
        config = load_config(config_path)
    except (MediaWorkerError, ValidationError) as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    if debug:
        config.debug = True
    return config


def _query_backends(config: AppConfig) -> Tuple[JobQueue, JobStore]:
    if config.queue.backend == "memory":
        typer.secho(
            "Warning: backend is memory; this command sees a fresh empty store, not a running worker's jobs.",
            fg=typer.colors.YELLOW, err=True,
        )
    return build_backends(config)


@app.command()
def run(
    config_path: Optional[Path] = ConfigOption,
    once: bool = typer.Option(False, "--once", help="Process a single job and exit"),
    max_jobs: Optional[int] = typer.Option(None, "--max-jobs", help="Exit after this many jobs"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")
):
    """Start a worker loop against the configured queue."""
    config = _load(config_path, debug)
    logger = setup_logging(config.log_dir, debug=config.debug)
    logger.info(f"Worker starting: backend={config.queue.backend}, queue={config.queue.queue_key}, "
                f"output={config.media.output_dir}")

    queue, store = build_backends(config)
    bus = EventBus()
    ProgressLogger(bus)
    worker = build_worker(config, queue, store, bus)

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, finishing current job")
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    worker.run(max_jobs=1 if once else max_jobs)


@app.command()
def enqueue(
    file: Path = typer.Argument(..., help="Uploaded media file to process"),
    mime_type: Optional[str] = typer.Option(None, "--mime-type", "-m", help="Declared content type"),
    config_path: Optional[Path] = ConfigOption,
):
    """Push a job descriptor for FILE onto the queue (what the upload service does)."""
    config = _load(config_path)
    if not file.exists():
        typer.secho(f"Error: File {file} does not exist.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    declared = mime_type or mimetypes.guess_type(file.name)[0]
    try:
        descriptor = JobDescriptor.for_file(file.resolve(), declared, file_size=file.stat().st_size)
        queue, store = build_backends(config)
        # Record first so status queries see it as queued
        store.put(Job.from_descriptor(descriptor))
        queue.enqueue(descriptor)
    except MediaWorkerError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.echo(descriptor.id)


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id returned by enqueue"),
    config_path: Optional[Path] = ConfigOption,
):
    """Show one job record (redis backend; memory only sees its own empty store)."""
    config = _load(config_path)
    _, store = _query_backends(config)
    try:
        job = store.get(job_id)
    except MediaWorkerError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if job is None:
        typer.secho(f"Job {job_id} not found", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    print_job(job, console)


@app.command()
def jobs(config_path: Optional[Path] = ConfigOption):
    """List all job records, newest first (redis backend; memory only sees its own empty store)."""
    config = _load(config_path)
    _, store = _query_backends(config)
    try:
        records = store.list_all()
    except InfrastructureError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    print_jobs(records, console)


@app.command()
def stats(config_path: Optional[Path] = ConfigOption):
    """Show queue length and jobs in progress (redis backend; memory only sees its own empty store)."""
    config = _load(config_path)
    queue, store = _query_backends(config)
    worker = build_worker(config, queue, store)
    try:
        console.print(stats_table(worker.stats()))
    except InfrastructureError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
