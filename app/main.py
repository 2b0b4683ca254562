from contextlib import asynccontextmanager
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from mindspend.db.database import init_db
from mindspend.logging_setup import configure_logging
from app.dependencies import DEVICE_COOKIE, SESSION_COOKIE, is_public, verify_session_token
from app.routers import account, auth, check, insights, settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(lifespan=lifespan)


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    if not is_public(request.url.path):
        token = request.cookies.get(SESSION_COOKIE)
        has_session = bool(token) and verify_session_token(token) is not None
        if not has_session and not request.cookies.get(DEVICE_COOKIE):
            return RedirectResponse(url="/", status_code=302)
    return await call_next(request)


app.include_router(auth.router)
app.include_router(settings.router)
app.include_router(check.router)
app.include_router(insights.router)
app.include_router(account.router)
