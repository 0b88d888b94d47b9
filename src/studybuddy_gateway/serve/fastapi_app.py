"""FastAPI gateway in front of Gemini, gated by Firebase ID tokens.

Endpoints:
- GET /health
- POST /ask  { "question": "..." }   (Authorization: Bearer <Firebase ID token>)
"""
from __future__ import annotations
import logging
import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from studybuddy_gateway.common.config import Settings, allowed_origin, load_env_file, load_settings
from studybuddy_gateway.common.errors import BadRequest, GatewayError
from studybuddy_gateway.common.logging_setup import setup_logging
from studybuddy_gateway.common.schema import AskIn, AskOut, HealthOut, VerifiedIdentity
from studybuddy_gateway.common.templates import load_template, render_prompt
from studybuddy_gateway.gateway.dispatch import Dispatcher, build_dispatcher
from studybuddy_gateway.gateway.identity import IdentityVerifier

load_env_file()
LOGGER = logging.getLogger("studybuddy.serve.app")
setup_logging(os.getenv("LOG_LEVEL", "INFO"))

CORS_ORIGIN = allowed_origin()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def get_verifier() -> IdentityVerifier:
    settings = get_settings()
    return IdentityVerifier.from_service_account(settings.firebase_credential, timeout=settings.auth_timeout)


@lru_cache(maxsize=1)
def get_dispatcher() -> Dispatcher:
    return build_dispatcher(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Fail fast on bad configuration before serving any request."""
    settings = get_settings()
    get_verifier()
    dispatcher = get_dispatcher()
    load_template()
    LOGGER.info(
        "Gateway ready: model=%s rotation=%s keys=%d origin=%s",
        settings.model, dispatcher.policy, len(settings.credentials), settings.cors_origin,
    )
    yield


app = FastAPI(title="Study Buddy Gateway", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CORS_ORIGIN],
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(GatewayError)
async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    else:
        LOGGER.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


def require_identity(
    request: Request,
    authorization: str | None = Header(default=None),
    verifier: IdentityVerifier = Depends(get_verifier),
) -> VerifiedIdentity:
    """Reject the request unless it carries a valid Firebase ID token."""
    identity = verifier.verify(authorization)
    request.state.identity = identity
    return identity


async def _read_question(request: Request) -> str:
    try:
        payload: Any = await request.json()
    except ValueError as e:
        raise BadRequest("Body is not valid JSON") from e
    try:
        return AskIn.model_validate(payload).question
    except ValidationError as e:
        raise BadRequest(f"Invalid body: {e.error_count()} error(s)") from e


@app.get("/health", response_model=HealthOut)
def health(settings: Settings = Depends(get_settings), dispatcher: Dispatcher = Depends(get_dispatcher)) -> HealthOut:
    return HealthOut(status="ok", model=settings.model, rotation=dispatcher.policy)


@app.post("/ask", response_model=AskOut)
async def ask(
    request: Request,
    identity: VerifiedIdentity = Depends(require_identity),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> AskOut:
    question = await _read_question(request)
    prompt = render_prompt(load_template(), question)
    LOGGER.info("Question from uid=%s (%d chars)", identity.uid, len(question))
    text = await run_in_threadpool(dispatcher.generate, prompt)
    return AskOut(response=text)
