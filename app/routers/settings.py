from dataclasses import replace
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.dependencies import (
    SESSION_COOKIE, base_ctx, commit, load_flow, redirect, redirect_to_step, require_profile,
)
from mindspend.core.profiles import INCOME_TYPES, build_profile, monthly_income, parse_amount
from mindspend.core.session import SETUP

router = APIRouter(tags=["settings"])
templates = Jinja2Templates(directory=Path(__file__).parent.parent / "templates")


def _profile_from_form(income_type: str, amount: str, working_days: str, monthly_expenses: str,
                       emergency_fund_goal: Optional[float] = None,
                       freedom_goal: Optional[float] = None):
    """Return a Profile, or None when the required income field is unusable."""
    value = parse_amount(amount)
    if not value:
        return None
    return build_profile(
        income_type if income_type in INCOME_TYPES else "monthly",
        value,
        working_days=working_days,
        monthly_expenses=parse_amount(monthly_expenses),
        emergency_fund_goal=emergency_fund_goal,
        freedom_goal=freedom_goal,
    )


# ── First-time setup ───────────────────────────────────────────────────────────

@router.get("/setup", response_class=HTMLResponse)
def setup_page(request: Request):
    flow = load_flow(request)
    if flow.sync() != SETUP:
        return redirect_to_step(request, flow)
    response = templates.TemplateResponse(request, "setup.html", {
        **base_ctx(flow, "setup"), "error": None, "form": {},
    })
    return commit(request, response, flow)


@router.post("/setup", response_class=HTMLResponse)
def setup_save(
    request: Request,
    income_type: str = Form("monthly"),
    amount: str = Form(""),
    working_days: str = Form("220"),
    monthly_expenses: str = Form(""),
):
    flow = load_flow(request)
    if flow.sync() != SETUP:
        return redirect_to_step(request, flow)

    form = {"income_type": income_type, "amount": amount, "working_days": working_days,
            "monthly_expenses": monthly_expenses}
    profile = _profile_from_form(income_type, amount, working_days, monthly_expenses)
    error = None
    if profile is None:
        error = "Enter your income to continue."
    else:
        result = flow.complete_setup(profile)
        if result.ok:
            return redirect_to_step(request, flow)
        error = result.failure.message
    response = templates.TemplateResponse(request, "setup.html", {
        **base_ctx(flow, "setup"), "error": error, "form": form,
    })
    return commit(request, response, flow)


# ── Settings ───────────────────────────────────────────────────────────────────

def _settings_page(request: Request, flow, error: str = None, saved: bool = False):
    profile = flow.session.profile
    response = templates.TemplateResponse(request, "settings.html", {
        **base_ctx(flow, "settings"),
        "profile": profile,
        "monthly_income": monthly_income(profile),
        "error": error,
        "flash_message": "Settings saved." if saved else None,
        "flash_type": "success",
    })
    return commit(request, response, flow)


@router.get("/settings", response_class=HTMLResponse)
def settings_page(request: Request, saved: str = ""):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    return _settings_page(request, flow, saved=bool(saved))


@router.post("/settings", response_class=HTMLResponse)
def settings_save(
    request: Request,
    income_type: str = Form("monthly"),
    amount: str = Form(""),
    working_days: str = Form("220"),
    monthly_expenses: str = Form(""),
    emergency_fund_goal: str = Form(""),
    freedom_goal: str = Form(""),
):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    profile = _profile_from_form(
        income_type, amount, working_days, monthly_expenses,
        emergency_fund_goal=parse_amount(emergency_fund_goal),
        freedom_goal=parse_amount(freedom_goal),
    )
    if profile is None:
        return _settings_page(request, flow, error="Enter your income to save.")
    result = flow.save_settings(profile)
    if not result.ok:
        return _settings_page(request, flow, error=result.failure.message)
    return redirect(request, flow, "/settings?saved=1")


@router.post("/settings/goals", response_class=HTMLResponse)
def goals_save(request: Request, emergency_fund_goal: str = Form(""), freedom_goal: str = Form("")):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    profile = replace(
        flow.session.profile,
        emergency_fund_goal=parse_amount(emergency_fund_goal) or None,
        freedom_goal=parse_amount(freedom_goal) or None,
    )
    result = flow.save_settings(profile)
    if not result.ok:
        return _settings_page(request, flow, error=result.failure.message)
    return redirect(request, flow, "/settings?saved=1")


@router.post("/settings/reset")
def settings_reset(request: Request):
    flow = load_flow(request)
    flow.reset()
    response = redirect(request, flow, "/")
    response.delete_cookie(SESSION_COOKIE)
    return response
