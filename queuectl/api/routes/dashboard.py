"""
Dashboard routes: read-only HTML pages and their JSON counterparts.
"""

import html
import logging
from typing import Any, Iterable

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import HTMLResponse

from queuectl.api.dependencies import QueueServiceDep
from queuectl.constants import STATE_FILTER_ALL
from queuectl.errors import ValidationError
from queuectl.types.api import DLQResponse, ExecutionLogResponse, JobResponse, SummaryResponse
from queuectl.utils import iso

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Dashboard"])

_STYLE = (
    "body{font-family:sans-serif;background:#111827;color:#f3f4f6;padding:30px}"
    "table{border-collapse:collapse;width:100%;background:#1e293b}"
    "th,td{border:1px solid #334155;padding:6px;text-align:left}"
    "a{color:#3b82f6}"
    ".cards{display:flex;gap:16px;flex-wrap:wrap;margin-bottom:24px}"
    ".card{background:#1f2937;border-radius:8px;padding:16px;min-width:120px}"
    ".card b{display:block;font-size:28px;margin-top:8px}"
)


def _page(title: str, body: str) -> HTMLResponse:
    return HTMLResponse(
        f"<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title)}</title><style>{_STYLE}</style></head>"
        f"<body><h1>{html.escape(title)}</h1>{body}</body></html>"
    )


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        value = iso(value)
    return html.escape(str(value))


def _table(headers: list[str], rows: Iterable[Iterable[Any]]) -> str:
    head = "".join(f"<th>{html.escape(h)}</th>" for h in headers)
    body = "".join(
        "<tr>" + "".join(f"<td>{_cell(value)}</td>" for value in row) + "</tr>" for row in rows
    )
    return f"<table><tr>{head}</tr>{body}</table>"


_BACK = "<p><a href='/'>Back</a></p>"


@router.get("/", response_class=HTMLResponse, summary="Dashboard home")
async def index(service: QueueServiceDep) -> HTMLResponse:
    """Job counts per state, total and DLQ size."""
    summary = await service.summary()

    cards = [(state, count) for state, count in sorted(summary["by_state"].items())]
    cards += [("total", summary["total"]), ("dlq", summary["dlq"])]
    body = "<div class='cards'>" + "".join(
        f"<div class='card'>{html.escape(label.upper())}<b>{count}</b></div>"
        for label, count in cards
    ) + "</div>"
    body += "<p><a href='/jobs'>View all jobs</a> | <a href='/dlq'>View DLQ</a></p>"
    return _page("queuectl dashboard", body)


@router.get("/jobs", response_class=HTMLResponse, summary="Jobs page")
async def jobs_page(
    service: QueueServiceDep,
    state: str = Query(default=STATE_FILTER_ALL),
) -> HTMLResponse:
    try:
        jobs = await service.list_jobs(state)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    table = _table(
        ["ID", "Command", "State", "Attempts", "Max Retries", "Priority", "Next Run", "Updated"],
        (
            (j.id, j.command, j.state, j.attempts, j.max_retries, j.priority, j.next_run_at, j.updated_at)
            for j in jobs
        ),
    )
    return _page("All jobs", table + _BACK)


@router.get("/dlq", response_class=HTMLResponse, summary="DLQ page")
async def dlq_page(service: QueueServiceDep) -> HTMLResponse:
    records = await service.dlq_list()
    if not records:
        return _page("Dead letter queue", "<p>DLQ empty</p>" + _BACK)

    table = _table(
        ["ID", "Command", "Attempts", "Reason", "Failed At"],
        ((r.id, r.command, r.attempts, r.reason, r.failed_at) for r in records),
    )
    return _page("Dead letter queue", table + _BACK)


@router.get(
    "/api/summary",
    response_model=SummaryResponse,
    summary="Job summary",
    description="Job counts per state plus DLQ size.",
)
async def api_summary(service: QueueServiceDep) -> SummaryResponse:
    return SummaryResponse(**await service.summary())


@router.get(
    "/api/jobs",
    response_model=list[JobResponse],
    summary="List jobs",
    description="List jobs, optionally filtered by state.",
)
async def api_jobs(
    service: QueueServiceDep,
    state: str = Query(default=STATE_FILTER_ALL),
) -> list[JobResponse]:
    """
    List jobs.

    Args:
        service: Queue service.
        state: A job state or ``all``.

    Returns:
        Jobs ordered by creation time.
    """
    try:
        jobs = await service.list_jobs(state)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [JobResponse.model_validate(job) for job in jobs]


@router.get(
    "/api/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job",
)
async def api_job(job_id: str, service: QueueServiceDep) -> JobResponse:
    job = await service.get(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return JobResponse.model_validate(job)


@router.get(
    "/api/jobs/{job_id}/logs",
    response_model=list[ExecutionLogResponse],
    summary="Job execution logs",
)
async def api_job_logs(job_id: str, service: QueueServiceDep) -> list[ExecutionLogResponse]:
    return [ExecutionLogResponse.model_validate(entry) for entry in await service.logs(job_id)]


@router.get(
    "/api/dlq",
    response_model=list[DLQResponse],
    summary="List DLQ",
)
async def api_dlq(service: QueueServiceDep) -> list[DLQResponse]:
    return [DLQResponse.model_validate(record) for record in await service.dlq_list()]
