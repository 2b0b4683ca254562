from pathlib import Path

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.dependencies import base_ctx, commit, load_flow, redirect, redirect_to_step, require_profile
from mindspend import config
from mindspend.core.calculator import (
    describe_time_context, format_price, format_time_cost, months_of_expenses_display, time_context,
)
from mindspend.core.session import COOLOFF, PRICE, RESULTS, parse_price, record_ethical_check
from mindspend.db.models import CATEGORIES

router = APIRouter(tags=["check"])
templates = Jinja2Templates(directory=Path(__file__).parent.parent / "templates")

REGRET_ANSWERS = {
    "yes": "Then buy it intentionally.",
    "unsure": (
        "Uncertainty is valuable information. Sleep on it. "
        "If you still want it tomorrow, it will still be there."
    ),
    "no": "Then don't buy it today. You can always come back. Your future self will thank you.",
}

CATEGORY_ICONS = {
    "food": "🍔",
    "tech": "💻",
    "clothes": "👕",
    "fun": "🎉",
    "transport": "🚗",
    "subscription": "🔁",
    "other": "🛍️",
}


def _price_page(request: Request, flow, error: str = None, form: dict = None):
    response = templates.TemplateResponse(request, "check.html", {
        **base_ctx(flow, "check"),
        "categories": CATEGORIES,
        "category_icons": CATEGORY_ICONS,
        "error": error,
        "form": form or {"price": "", "label": "", "category": "other"},
    })
    return commit(request, response, flow)


@router.get("/home")
def home(request: Request):
    flow = load_flow(request)
    flow.logo_reset()
    flow.sync()
    return redirect_to_step(request, flow)


# ── Price entry ────────────────────────────────────────────────────────────────

@router.get("/check", response_class=HTMLResponse)
def price_page(request: Request):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    if flow.state.step == COOLOFF:
        return redirect_to_step(request, flow)
    flow.state.step = PRICE
    return _price_page(request, flow)


@router.post("/check", response_class=HTMLResponse)
def price_submit(
    request: Request,
    price: str = Form(""),
    label: str = Form(""),
    category: str = Form("other"),
):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    value = parse_price(price)
    if value is None:
        return _price_page(request, flow, error="Enter a price greater than zero.",
                           form={"price": price, "label": label, "category": category})
    flow.submit_price(value, label, category)
    return redirect(request, flow, "/check/cooloff")


# ── Cool-off ───────────────────────────────────────────────────────────────────

@router.get("/check/cooloff", response_class=HTMLResponse)
def cooloff_page(request: Request):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    if flow.state.step != COOLOFF:
        return redirect_to_step(request, flow)
    if flow.complete_cool_off():
        return redirect(request, flow, "/check/results")
    response = templates.TemplateResponse(request, "cooloff.html", {
        **base_ctx(flow, "check"),
        "remaining": flow.cool_off_remaining(),
        "total": config.cool_off_seconds(),
        "price": format_price(flow.state.price),
        "label": flow.display_label,
    })
    return commit(request, response, flow)


# ── Results ────────────────────────────────────────────────────────────────────

@router.get("/check/results", response_class=HTMLResponse)
def results_page(request: Request, answer: str = ""):
    flow = load_flow(request)
    blocked = require_profile(request, flow)
    if blocked:
        return blocked
    if flow.state.step != RESULTS or flow.state.price is None:
        return redirect_to_step(request, flow)

    cost, saved = flow.show_results()
    fraction = cost.workday_fraction
    months = cost.months_of_expenses
    response = templates.TemplateResponse(request, "results.html", {
        **base_ctx(flow, "check"),
        "cost": cost,
        "price": format_price(flow.state.price),
        "label": flow.display_label,
        "category": flow.state.category,
        "category_icon": CATEGORY_ICONS.get(flow.state.category, CATEGORY_ICONS["other"]),
        "time_cost": format_time_cost(cost.time_in_minutes),
        "time_tier": time_context(fraction),
        "time_context": describe_time_context(fraction),
        "months_display": months_of_expenses_display(months) if months is not None else None,
        "viewing_history": flow.state.viewing_history,
        "save_error": saved.failure.message if saved is not None and not saved.ok else None,
        "answer": answer if answer in REGRET_ANSWERS else "",
        "answer_message": REGRET_ANSWERS.get(answer),
    })
    return commit(request, response, flow)


@router.post("/check/new")
def new_check(request: Request):
    flow = load_flow(request)
    flow.new_price()
    return redirect(request, flow, "/check")


# ── Weekly honest check-in ─────────────────────────────────────────────────────

@router.post("/ethical-check", response_class=HTMLResponse)
def ethical_check(request: Request, answer: str = Form("")):
    flow = load_flow(request)
    record_ethical_check(flow.session.device, flow.clock())
    response = templates.TemplateResponse(request, "partials/ethical_check.html", {
        "thanked": answer == "yes",
    })
    return commit(request, response, flow)
