from pathlib import Path

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.dependencies import SESSION_COOKIE, base_ctx, commit, load_flow, redirect, redirect_to_step
from mindspend.core import identity
from mindspend.core.errors import Result

router = APIRouter(prefix="/account", tags=["account"])
templates = Jinja2Templates(directory=Path(__file__).parent.parent / "templates")

DELETE_CONFIRMATION = "DELETE"


def _account_page(request: Request, flow, error: str = None, flash_message: str = None):
    document = flow.session.profiles.document() if flow.session.profiles else None
    response = templates.TemplateResponse(request, "account.html", {
        **base_ctx(flow, "account"),
        "document": document,
        "error": error,
        "flash_message": flash_message,
    })
    return commit(request, response, flow)


@router.get("", response_class=HTMLResponse)
def account_page(request: Request, sent: str = ""):
    flow = load_flow(request)
    if not flow.session.authenticated:
        flow.sync()
        return redirect_to_step(request, flow)
    flow.open_profile()
    return _account_page(request, flow, flash_message="Verification email sent." if sent else None)


@router.post("/resend-verification")
def account_resend(request: Request):
    flow = load_flow(request)
    if not flow.session.authenticated:
        flow.sync()
        return redirect_to_step(request, flow)
    try:
        identity.send_verification(flow.session.account)
    except Exception as e:
        return _account_page(request, flow, error=Result.fail(e).failure.message)
    return redirect(request, flow, "/account?sent=1")


@router.post("/delete", response_class=HTMLResponse)
def account_delete(request: Request, confirm: str = Form("")):
    flow = load_flow(request)
    if not flow.session.authenticated:
        flow.sync()
        return redirect_to_step(request, flow)
    if confirm.strip() != DELETE_CONFIRMATION:
        return _account_page(request, flow, error='Type "DELETE" to confirm.')
    result = flow.delete_account()
    if not result.ok:
        return _account_page(request, flow, error=result.failure.message)
    response = redirect(request, flow, "/")
    response.delete_cookie(SESSION_COOKIE)
    return response
