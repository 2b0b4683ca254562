from datetime import datetime, timezone
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from itsdangerous import BadSignature, URLSafeTimedSerializer

from mindspend import config
from mindspend.core import identity
from mindspend.core.device_storage import DeviceStorage, new_device_id
from mindspend.core.session import (
    AUTH, COOLOFF, INSIGHTS, PRICE, PROFILE, RESULTS, SETUP, VERIFY_EMAIL, WELCOME,
    FlowController, FlowState, ethical_check_due, open_session,
)

SESSION_COOKIE = "ms_session"
DEVICE_COOKIE = "ms_device"
FLOW_COOKIE = "ms_flow"
SESSION_MAX_AGE = 60 * 60 * 24 * 7  # 7 days
DEVICE_MAX_AGE = 60 * 60 * 24 * 365 * 2

STEP_URLS = {
    WELCOME: "/",
    AUTH: "/auth",
    VERIFY_EMAIL: "/verify-email",
    SETUP: "/setup",
    PRICE: "/check",
    COOLOFF: "/check/cooloff",
    RESULTS: "/check/results",
    INSIGHTS: "/insights",
    PROFILE: "/account",
}


def _get_signer(salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(config.secret_key(), salt=salt)


def create_session_token(account_id: int) -> str:
    return _get_signer("session").dumps({"uid": account_id})


def verify_session_token(token: str) -> Optional[tuple[int, datetime]]:
    """Return (account id, signed-in time) for a valid token, else None."""
    try:
        payload, signed_at = _get_signer("session").loads(
            token, max_age=SESSION_MAX_AGE, return_timestamp=True,
        )
    except BadSignature:
        return None
    if not isinstance(payload, dict) or "uid" not in payload:
        return None
    if signed_at.tzinfo is None:
        signed_at = signed_at.replace(tzinfo=timezone.utc)
    return payload["uid"], signed_at


def _device_id(request: Request) -> str:
    token = request.cookies.get(DEVICE_COOKIE)
    if token:
        try:
            return _get_signer("device").loads(token)
        except BadSignature:
            pass
    if getattr(request.state, "new_device_id", None) is None:
        request.state.new_device_id = new_device_id()
    return request.state.new_device_id


def _flow_state(request: Request) -> FlowState:
    token = request.cookies.get(FLOW_COOKIE)
    if not token:
        return FlowState()
    try:
        return FlowState.from_dict(_get_signer("flow").loads(token))
    except BadSignature:
        return FlowState()


def load_flow(request: Request) -> FlowController:
    """Build this request's session and flow from its cookies."""
    device = DeviceStorage(_device_id(request))
    account, signed_in_at = None, None
    token = request.cookies.get(SESSION_COOKIE)
    verified = verify_session_token(token) if token else None
    if verified:
        account = identity.get_account(verified[0])
        if account is not None:
            signed_in_at = verified[1]
    session = open_session(device, account=account, signed_in_at=signed_in_at)
    return FlowController(session, _flow_state(request))


def commit(request: Request, response: Response, flow: FlowController) -> Response:
    """Write the flow state (and a new device id, if one was minted) back to cookies."""
    response.set_cookie(
        FLOW_COOKIE,
        _get_signer("flow").dumps(flow.state.to_dict()),
        httponly=True,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )
    new_id = getattr(request.state, "new_device_id", None)
    if new_id:
        response.set_cookie(
            DEVICE_COOKIE,
            _get_signer("device").dumps(new_id),
            httponly=True,
            samesite="lax",
            max_age=DEVICE_MAX_AGE,
        )
    return response


def sign_in_cookie(response: Response, account_id: int) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        create_session_token(account_id),
        httponly=True,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )


def redirect(request: Request, flow: FlowController, url: str) -> RedirectResponse:
    return commit(request, RedirectResponse(url=url, status_code=303), flow)


def redirect_to_step(request: Request, flow: FlowController) -> RedirectResponse:
    return redirect(request, flow, STEP_URLS[flow.state.step])


def require_profile(request: Request, flow: FlowController) -> Optional[RedirectResponse]:
    """Redirect away unless the session is usable and has a profile."""
    step = flow.sync()
    if step in (WELCOME, AUTH, VERIFY_EMAIL, SETUP):
        return redirect_to_step(request, flow)
    if flow.session.profile is None:
        flow.state.step = SETUP
        return redirect_to_step(request, flow)
    return None


def base_ctx(flow: FlowController, active_tab: str = "") -> dict:
    """Context every page needs for the header and the weekly check-in."""
    session = flow.session
    return {
        "active_tab": active_tab,
        "authenticated": session.authenticated,
        "is_guest": session.is_guest,
        "account": session.account,
        "has_profile": session.profile is not None,
        "ethical_check_due": session.active and ethical_check_due(session.device, flow.clock()),
    }


# Paths that don't require a session or a device cookie
_PUBLIC_PREFIXES = ("/auth", "/logout")


def is_public(path: str) -> bool:
    return path == "/" or any(path.startswith(p) for p in _PUBLIC_PREFIXES)
