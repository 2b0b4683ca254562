from pathlib import Path

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.dependencies import (
    SESSION_COOKIE, STEP_URLS, base_ctx, commit, load_flow, redirect, redirect_to_step,
    sign_in_cookie,
)
from mindspend.core import identity
from mindspend.core.errors import Result
from mindspend.core.session import WELCOME, continue_as_guest, open_session

router = APIRouter(tags=["auth"])
templates = Jinja2Templates(directory=Path(__file__).parent.parent / "templates")


def _auth_page(request: Request, flow, mode: str = "signin", **kwargs):
    response = templates.TemplateResponse(request, "auth.html", {
        **base_ctx(flow, "auth"), "mode": mode, "error": None, "verification_sent": False,
        "email": "", **kwargs,
    })
    return commit(request, response, flow)


@router.get("/", response_class=HTMLResponse)
def welcome(request: Request):
    flow = load_flow(request)
    if flow.session.active:
        flow.sync()
        return redirect_to_step(request, flow)
    flow.state.step = WELCOME
    response = templates.TemplateResponse(request, "welcome.html", base_ctx(flow))
    return commit(request, response, flow)


@router.get("/auth", response_class=HTMLResponse)
def auth_page(request: Request, mode: str = "signin"):
    flow = load_flow(request)
    if flow.session.active:
        flow.sync()
        return redirect_to_step(request, flow)
    flow.get_started()
    return _auth_page(request, flow, mode="signup" if mode == "signup" else "signin")


@router.post("/auth/signin")
def sign_in(request: Request, email: str = Form(""), password: str = Form("")):
    flow = load_flow(request)
    try:
        account = identity.sign_in(email, password)
    except Exception as e:
        result = Result.fail(e)
        return _auth_page(request, flow, mode="signin", email=email, error=result.failure.message)

    flow.session = open_session(flow.session.device, account=account)
    flow.auth_succeeded()
    flow.sync()
    response = redirect(request, flow, STEP_URLS[flow.state.step])
    sign_in_cookie(response, account.id)
    return response


@router.post("/auth/signup")
def sign_up(request: Request, email: str = Form(""), password: str = Form(""),
            display_name: str = Form("")):
    flow = load_flow(request)
    try:
        identity.sign_up(email, password, display_name=display_name.strip() or None)
    except Exception as e:
        result = Result.fail(e)
        return _auth_page(request, flow, mode="signup", email=email, error=result.failure.message)
    return _auth_page(request, flow, mode="signin", email=email.strip(), verification_sent=True)


@router.post("/auth/guest")
def guest(request: Request):
    flow = load_flow(request)
    flow.session = continue_as_guest(flow.session.device)
    flow.auth_succeeded()
    return redirect_to_step(request, flow)


@router.get("/auth/action", response_class=HTMLResponse)
def auth_action(request: Request, mode: str = "", oobCode: str = ""):
    flow = load_flow(request)
    if not oobCode:
        ok, message = False, "Invalid link. The code is missing."
    elif mode != "verifyEmail":
        ok, message = False, "Invalid request mode."
    else:
        try:
            identity.verify_email(oobCode)
        except Exception as e:
            ok, message = False, Result.fail(e).failure.message
        else:
            ok, message = True, "Your email has been verified successfully. You can now access all features."
    response = templates.TemplateResponse(request, "auth_action.html", {
        **base_ctx(flow), "ok": ok, "message": message,
    })
    return commit(request, response, flow)


@router.get("/verify-email", response_class=HTMLResponse)
def verify_email_page(request: Request, sent: str = ""):
    flow = load_flow(request)
    if not flow.session.needs_verification:
        flow.sync()
        return redirect_to_step(request, flow)
    response = templates.TemplateResponse(request, "verify_email.html", {
        **base_ctx(flow), "sent": bool(sent),
    })
    return commit(request, response, flow)


@router.post("/verify-email/resend")
def resend_verification(request: Request):
    flow = load_flow(request)
    if flow.session.authenticated:
        identity.send_verification(flow.session.account)
    return redirect(request, flow, "/verify-email?sent=1")


@router.post("/logout")
def logout(request: Request):
    flow = load_flow(request)
    flow.reset()
    response = redirect(request, flow, "/")
    response.delete_cookie(SESSION_COOKIE)
    return response
