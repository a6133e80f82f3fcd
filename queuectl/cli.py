"""
Command line interface.

Every command opens the store, runs one service call and closes it again;
domain errors become a red one-line message and exit status 1.
"""

import asyncio
import json
import signal
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from queuectl import __version__
from queuectl.config import get_settings
from queuectl.constants import STATE_FILTER_ALL
from queuectl.db import Database
from queuectl.errors import QueueError
from queuectl.observability.logging import setup_logging
from queuectl.queue import QueueService
from queuectl.utils import iso
from queuectl.worker.pool import WorkerPool, stop_from_pid_file

T = TypeVar("T")


def _run(ctx: click.Context, call: Callable[[QueueService], Awaitable[T]]) -> T:
    async def _main() -> T:
        database = Database(ctx.obj["database_url"])
        try:
            await database.init()
            return await call(QueueService(database))
        finally:
            await database.dispose()

    try:
        return asyncio.run(_main())
    except QueueError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        raise SystemExit(1)


def _fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    raise SystemExit(1)


def _job_row(job: Any) -> str:
    return (
        f"{job.id:>36} | {job.state:<10} | attempts={job.attempts}/{job.max_retries} "
        f"| prio={job.priority} | run_at={iso(job.run_at)} | next={iso(job.next_run_at)} "
        f"| cmd={job.command}"
    )


@click.group(help="queuectl - background job queue with retries, backoff and a DLQ")
@click.version_option(__version__, prog_name="queuectl")
@click.option(
    "--database-url",
    envvar="QUEUECTL_DATABASE_URL",
    default=None,
    help="SQLAlchemy URL of the job store (default: sqlite+aiosqlite:///queue.db)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log at INFO level to stderr")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, verbose: bool) -> None:
    setup_logging(level="INFO" if verbose else "WARNING", stream=sys.stderr)
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url


# ---------- Enqueue ----------
@cli.command("enqueue", help="Add a new job from a JSON payload")
@click.argument("payload")
@click.pass_context
def enqueue_cmd(ctx: click.Context, payload: str) -> None:
    job_id = _run(ctx, lambda service: service.enqueue(payload))
    click.secho(f"Enqueued job {job_id}", fg="green")


# ---------- Workers ----------
@cli.group("worker", help="Manage worker processes")
@click.option("--pid-file", default=None, help="PID file path (default: workers.json)")
@click.pass_context
def worker_group(ctx: click.Context, pid_file: str | None) -> None:
    ctx.obj["pid_file"] = pid_file or get_settings().pid_file


@worker_group.command("start", help="Start N worker processes")
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True, help="Number of workers")
@click.option("--detach", is_flag=True, help="Return immediately and leave the workers running")
@click.pass_context
def worker_start(ctx: click.Context, count: int, detach: bool) -> None:
    # Create the schema once before the workers race to do it
    _run(ctx, lambda service: service.summary())

    pool = WorkerPool(database_url=ctx.obj["database_url"], pid_file=ctx.obj["pid_file"])
    pids = pool.start(count, detach=detach)

    if detach:
        click.secho(f"Started {count} worker(s): {', '.join(map(str, pids))}", fg="cyan")
        click.echo("Stop them with: queuectl worker stop")
        return

    click.secho(f"Started {count} worker(s). Press Ctrl+C to stop...", fg="cyan")

    def _shutdown(signum, frame):
        pool.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    pool.wait()
    click.secho("Workers stopped.", fg="yellow")


@worker_group.command("stop", help="Stop running workers gracefully")
@click.pass_context
def worker_stop(ctx: click.Context) -> None:
    count = stop_from_pid_file(ctx.obj["pid_file"])
    if count == 0:
        click.echo("No running workers found.")
    else:
        click.secho(f"Sent stop signal to {count} worker(s).", fg="yellow")


# ---------- Jobs ----------
@cli.command("status", help="Show job counts per state and DLQ size")
@click.pass_context
def status_cmd(ctx: click.Context) -> None:
    summary = _run(ctx, lambda service: service.summary())
    click.echo(json.dumps(summary, indent=2))


@cli.command("list", help="List jobs by state or readiness")
@click.option(
    "--state",
    default=STATE_FILTER_ALL,
    show_default=True,
    help="pending | processing | completed | failed | dead | all",
)
@click.option("--ready", is_flag=True, help="Only pending jobs whose run_at has passed")
@click.pass_context
def list_cmd(ctx: click.Context, state: str, ready: bool) -> None:
    if ready:
        jobs = _run(ctx, lambda service: service.list_ready())
    else:
        jobs = _run(ctx, lambda service: service.list_jobs(state))

    if not jobs:
        click.echo("No jobs found.")
        return

    for job in jobs:
        click.echo(_job_row(job))


@cli.command("logs", help="Show execution attempts of a job")
@click.argument("job_id")
@click.pass_context
def logs_cmd(ctx: click.Context, job_id: str) -> None:
    entries = _run(ctx, lambda service: service.logs(job_id))
    if not entries:
        click.echo(f"No execution logs for {job_id}.")
        return

    for number, entry in enumerate(entries, start=1):
        click.secho(
            f"#{number} exit={entry.exit_code} started={iso(entry.started_at)} "
            f"finished={iso(entry.finished_at)}",
            bold=True,
        )
        if entry.stdout:
            click.echo(entry.stdout.rstrip("\n"))
        if entry.stderr:
            click.secho(entry.stderr.rstrip("\n"), fg="red")


# ---------- DLQ ----------
@cli.group("dlq", help="Dead letter queue")
def dlq_group() -> None:
    pass


@dlq_group.command("list", help="List jobs in the dead letter queue")
@click.pass_context
def dlq_list_cmd(ctx: click.Context) -> None:
    records = _run(ctx, lambda service: service.dlq_list())
    if not records:
        click.echo("DLQ is empty.")
        return

    for r in records:
        click.echo(
            f"{r.id} | attempts={r.attempts}/{r.max_retries} | reason={r.reason} "
            f"| failed_at={iso(r.failed_at)} | cmd={r.command}"
        )


@dlq_group.command("retry", help="Requeue a job from the dead letter queue")
@click.argument("job_id")
@click.pass_context
def dlq_retry_cmd(ctx: click.Context, job_id: str) -> None:
    if _run(ctx, lambda service: service.dlq_retry(job_id)):
        click.secho(f"Requeued DLQ job {job_id}.", fg="green")
    else:
        _fail(f"Job {job_id} not found in DLQ.")


# ---------- Config ----------
@cli.group("config", help="Persisted configuration (max-retries, backoff-base, job-timeout-ms)")
def config_group() -> None:
    pass


@config_group.command("get", help="Print one config value")
@click.argument("key")
@click.pass_context
def config_get_cmd(ctx: click.Context, key: str) -> None:
    value = _run(ctx, lambda service: service.config_get(key))
    if value is None:
        _fail(f"Config key {key} is not set.")
    click.echo(value)


@config_group.command("list", help="Print every config value")
@click.pass_context
def config_list_cmd(ctx: click.Context) -> None:
    click.echo(json.dumps(_run(ctx, lambda service: service.config_all()), indent=2))


@config_group.command("set", help="Set a config value")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx: click.Context, key: str, value: str) -> None:
    normalized = _run(ctx, lambda service: service.config_set(key, value))
    click.secho(f"Updated {normalized}={value}", fg="green")


# ---------- Maintenance ----------
@cli.command("recover", help="Return jobs stuck in processing to the backlog")
@click.option(
    "--older-than",
    type=click.FloatRange(min=0, min_open=True),
    required=True,
    help="Minimum lock age in seconds",
)
@click.pass_context
def recover_cmd(ctx: click.Context, older_than: float) -> None:
    count = _run(ctx, lambda service: service.recover(older_than))
    click.secho(f"Recovered {count} job(s).", fg="yellow" if count else None)


@cli.command("clear", help="Delete all jobs, logs and DLQ entries")
@click.confirmation_option(prompt="Delete every job, log and DLQ entry?")
@click.pass_context
def clear_cmd(ctx: click.Context) -> None:
    _run(ctx, lambda service: service.clear())
    click.secho("Cleared all jobs, logs and DLQ entries.", fg="yellow")


@cli.command("dashboard", help="Serve the read-only web dashboard")
@click.option("--host", default=None, help="Bind address (default: 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Port (default: 3000)")
@click.pass_context
def dashboard_cmd(ctx: click.Context, host: str | None, port: int | None) -> None:
    from queuectl.api.main import run

    run(host=host, port=port, database_url=ctx.obj["database_url"])


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
