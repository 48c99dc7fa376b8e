from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from .coze_client import DEFAULT_BASE_URL, CozeClient
from .errors import GatewayError, ValidationError
from .validation import DEFAULT_MAX_UPLOAD_BYTES, parse_prompt_style, read_upload
from .workflow import DEFAULT_POLL_INTERVAL, DEFAULT_POLL_MAX_ATTEMPTS, WorkflowPoller, WorkflowRunner

logger = logging.getLogger(__name__)

IMAGE_TO_PROMPT_PATH = "/api/image-to-prompt"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@dataclass
class GatewayConfig:
    api_token: Optional[str] = None
    workflow_id: Optional[str] = None
    api_base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    # Polling settings
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    disconnect_check_interval: float = 1.0


@dataclass
class GatewayState:
    config: GatewayConfig
    client: CozeClient
    runner: WorkflowRunner


class PromptResponse(BaseModel):
    success: bool = True
    prompt: str
    file_name: str = Field(alias="fileName")
    file_size: int = Field(alias="fileSize")


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": message},
        status_code=status_code,
        headers={"Access-Control-Allow-Origin": "*"},
    )


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event, interval: float) -> None:
    """Set cancel_event once the client goes away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.warning("Client disconnected, cancelling workflow polling")
            cancel_event.set()
            return
        await asyncio.sleep(interval)


def build_state(config: GatewayConfig) -> GatewayState:
    client = CozeClient(
        api_token=config.api_token,
        workflow_id=config.workflow_id,
        base_url=config.api_base_url,
        timeout=config.request_timeout,
    )
    poller = WorkflowPoller(
        client,
        interval=config.poll_interval,
        max_attempts=config.poll_max_attempts,
    )
    return GatewayState(config=config, client=client, runner=WorkflowRunner(client, poller))


def create_app(config: Optional[GatewayConfig] = None) -> FastAPI:
    cfg = config or GatewayConfig()
    state = build_state(cfg)

    if not state.client.is_configured:
        logger.warning("Coze API token or workflow id missing; image-to-prompt requests will fail")

    app = FastAPI(title="Image to Prompt Gateway", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        if isinstance(exc, ValidationError):
            logger.warning(f"Rejected upload on {request.url.path}: {exc}")
            return _error_response(str(exc), 400)
        logger.error(f"Image to prompt failed ({type(exc).__name__}): {exc}")
        return _error_response(str(exc), 500)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in errors
        )
        logger.warning(f"Malformed request on {request.url.path}: {detail}")
        return _error_response(f"invalid request, please upload the image as a file field: {detail}", 400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unexpected error on {request.url.path}: {exc}")
        return _error_response("Internal server error, please try again later", 500)

    def get_state() -> GatewayState:
        return state

    @app.post(
        IMAGE_TO_PROMPT_PATH,
        response_model=PromptResponse,
        response_model_by_alias=True,
    )
    async def image_to_prompt(
        request: Request,
        state: GatewayState = Depends(get_state),
        image: Optional[UploadFile] = File(None),
        prompt_type: Optional[str] = Form(None),
        user_query: Optional[str] = Form(None),
    ) -> PromptResponse:
        asset = await read_upload(image, max_bytes=state.config.max_upload_bytes)
        prompt_style = parse_prompt_style(prompt_type)
        query = user_query if user_query and user_query.strip() else None

        cancel_event = asyncio.Event()
        watcher = asyncio.create_task(
            _watch_disconnect(request, cancel_event, state.config.disconnect_check_interval)
        )
        try:
            prompt = await state.runner.image_to_prompt(
                asset,
                prompt_style=prompt_style,
                user_query=query,
                cancel_event=cancel_event,
            )
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        logger.info(f"Generated prompt for {asset.filename} ({len(prompt)} chars)")
        return PromptResponse(success=True, prompt=prompt, fileName=asset.filename, fileSize=asset.size)

    @app.options(IMAGE_TO_PROMPT_PATH)
    async def image_to_prompt_preflight() -> Response:
        return Response(status_code=200, headers=CORS_HEADERS)

    @app.get("/health")
    async def health_check(state: GatewayState = Depends(get_state)) -> JSONResponse:
        configured = state.client.is_configured
        response = {
            "status": "healthy" if configured else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "coze": {
                "base_url": state.client.base_url,
                "token_configured": bool(state.config.api_token),
                "workflow_configured": bool(state.config.workflow_id),
            },
            "polling": {
                "interval_seconds": state.config.poll_interval,
                "max_attempts": state.config.poll_max_attempts,
            },
        }
        return JSONResponse(content=response, status_code=200)

    return app
