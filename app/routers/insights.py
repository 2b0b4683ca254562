from pathlib import Path

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.dependencies import base_ctx, commit, load_flow, redirect, require_profile
from app.routers.check import CATEGORY_ICONS
from mindspend.core.calculator import format_price, format_time_cost
from mindspend.core.insights import format_duration, time_ago

router = APIRouter(prefix="/insights", tags=["insights"])
templates = Jinja2Templates(directory=Path(__file__).parent.parent / "templates")

SHOWN_HISTORY = 20


def _row_ctx(flow, records) -> dict:
    now = flow.clock()
    return {
        "records": records[:SHOWN_HISTORY],
        "category_icons": CATEGORY_ICONS,
        "time_ago": lambda when: time_ago(when, now),
        "format_price": format_price,
        "format_time_cost": format_time_cost,
    }


def _body_ctx(flow, result, error: str = None) -> dict:
    """Summary, pattern flags and rows from one load_insights() call."""
    summary, records = result.value if result.ok else (None, [])
    return {
        **_row_ctx(flow, records),
        "summary": summary,
        "skipped_time": format_duration(summary.total_skipped_time) if summary else None,
        "error": error or (None if result.ok else result.failure.message),
    }


def _body(request: Request, flow, error: str = None):
    """Re-render the whole insights body so the summary tracks every change."""
    response = templates.TemplateResponse(
        request, "partials/insights_body.html", _body_ctx(flow, flow.load_insights(), error),
    )
    return commit(request, response, flow)


@router.get("", response_class=HTMLResponse)
def insights_page(request: Request):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    flow.open_insights()
    response = templates.TemplateResponse(request, "insights.html", {
        **base_ctx(flow, "insights"),
        **_body_ctx(flow, flow.load_insights()),
    })
    return commit(request, response, flow)


@router.get("/{record_id}")
def insights_view(request: Request, record_id: str):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    result = flow.view_history(record_id)
    if not result.ok:
        return redirect(request, flow, "/insights")
    return redirect(request, flow, "/check/results")


@router.post("/{record_id}/decision", response_class=HTMLResponse)
def insights_decision(request: Request, record_id: str, decision: str = Form(...)):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    result = flow.decide(record_id, decision)
    return _body(request, flow, error=None if result.ok else result.failure.message)


@router.post("/{record_id}/regret", response_class=HTMLResponse)
def insights_regret(request: Request, record_id: str, regret: str = Form(...)):
    """Confirm a purchase was bought and record whether it was regretted."""
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    result = flow.decide(record_id, "bought", regret=regret == "yes")
    return _body(request, flow, error=None if result.ok else result.failure.message)


@router.delete("/{record_id}", response_class=HTMLResponse)
def insights_delete(request: Request, record_id: str):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    result = flow.delete_record(record_id)
    return _body(request, flow, error=None if result.ok else result.failure.message)
