"""HTTP client for the Coze open API (file upload, workflow run, run status)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import GatewayConfigurationError, ProtocolError, UpstreamError
from .models import (
    ExecutionState,
    PromptStyle,
    RemoteFileHandle,
    UploadedAsset,
    WorkflowInvocation,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coze.cn"

UPLOAD_PATH = "/v1/files/upload"
WORKFLOW_RUN_PATH = "/v1/workflow/run"
WORKFLOW_STATUS_PATH = "/v1/workflow/run/retrieve"

_STATE_ALIASES = {
    "running": ExecutionState.RUNNING,
    "success": ExecutionState.SUCCESS,
    "failed": ExecutionState.FAILED,
    "fail": ExecutionState.FAILED,
}


def mask_token(token: Optional[str]) -> str:
    if not token:
        return "<unset>"
    return f"{token[:6]}..." if len(token) > 6 else "***"


def parse_execution_state(raw: Any, execute_id: Optional[str] = None) -> ExecutionState:
    """Map a vendor status string onto ExecutionState (case-insensitive)."""
    if not isinstance(raw, str) or raw.strip().lower() not in _STATE_ALIASES:
        raise ProtocolError(
            f"workflow status response for execution {execute_id or '<unknown>'} "
            f"carried unknown status: {raw!r}"
        )
    return _STATE_ALIASES[raw.strip().lower()]


def parse_inline_output(data: str) -> Optional[str]:
    """
    Extract the output text from an inline workflow result.

    The synchronous run endpoint returns ``data`` as a JSON-encoded string
    of the workflow's output object, e.g. ``'{"output": "a cat"}'``.

    Returns:
        Output text, or None when ``data`` is empty

    Raises:
        ProtocolError: String is not JSON or has no string ``output`` key
    """
    if not data.strip():
        return None
    try:
        decoded = json.loads(data)
    except ValueError as e:
        raise ProtocolError(f"workflow returned an inline result that is not valid JSON: {data[:200]}") from e
    if not isinstance(decoded, dict) or not isinstance(decoded.get("output"), str):
        raise ProtocolError(f"workflow inline result has no output field: {data[:200]}")
    return decoded["output"]


class CozeClient:
    """HTTP client bound to one API token and workflow id."""

    def __init__(
        self,
        api_token: Optional[str],
        workflow_id: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
    ):
        """
        Initialize Coze client.

        Args:
            api_token: Bearer token for the Coze open API
            workflow_id: Identifier of the image-to-prompt workflow
            base_url: API base URL
            timeout: HTTP request timeout in seconds
        """
        self.api_token = api_token
        self.workflow_id = workflow_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token and self.workflow_id)

    def _ensure_configured(self) -> None:
        if not self.api_token:
            raise GatewayConfigurationError("Coze API token is not configured (set COZE_API_TOKEN)")
        if not self.workflow_id:
            raise GatewayConfigurationError("Coze workflow id is not configured (set COZE_WORKFLOW_ID)")

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}

    @staticmethod
    def _decode(response: httpx.Response, operation: str) -> Dict[str, Any]:
        if response.status_code != 200:
            error_msg = f"{operation} failed: HTTP {response.status_code}: {response.text}"
            logger.error(error_msg)
            raise UpstreamError(error_msg, status_code=response.status_code, body=response.text)
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"{operation} returned a non-JSON body: {response.text[:200]}") from e
        if not isinstance(body, dict) or not isinstance(body.get("code"), int):
            raise ProtocolError(f"{operation} response has no integer code: {body!r}")
        return body

    async def upload_file(self, asset: UploadedAsset) -> RemoteFileHandle:
        """
        Upload an image to the Coze file store.

        Args:
            asset: Validated image

        Returns:
            RemoteFileHandle referencing the uploaded bytes

        Raises:
            UpstreamError: Transport failure, non-200 status or code != 0
            ProtocolError: Success envelope without a file id
        """
        self._ensure_configured()
        logger.info(
            f"Uploading file {asset.filename} ({asset.size} bytes, {asset.content_type}) "
            f"with token {mask_token(self.api_token)}"
        )
        files = {"file": (asset.filename, asset.content, asset.content_type)}

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}{UPLOAD_PATH}",
                    files=files,
                    headers=self._auth_headers(),
                    timeout=self.timeout,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"File upload transport error: {e}")
            raise UpstreamError(f"File upload failed: {e}") from e

        body = self._decode(response, "File upload")
        if body["code"] != 0:
            error_msg = body.get("msg") or "File upload failed"
            logger.error(f"File upload rejected (code {body['code']}): {error_msg}")
            raise UpstreamError(error_msg, status_code=response.status_code, body=response.text)

        data = body.get("data")
        if not isinstance(data, dict) or not data.get("id"):
            raise ProtocolError(f"File upload succeeded but returned no file id: {body!r}")

        handle = RemoteFileHandle(
            file_id=str(data["id"]),
            file_name=data.get("file_name"),
            file_size=data.get("file_size"),
            file_type=data.get("file_type"),
        )
        logger.info(
            f"File uploaded, file id: {handle.file_id} "
            f"(remote name={handle.file_name}, size={handle.file_size}, type={handle.file_type})"
        )
        return handle

    async def run_workflow(
        self,
        file_id: str,
        prompt_style: PromptStyle = PromptStyle.GENERAL,
        user_query: Optional[str] = None,
    ) -> WorkflowInvocation:
        """
        Submit one workflow run for an uploaded file.

        The returned invocation carries the vendor code/msg untouched; deciding
        what a non-zero code means is left to the caller.

        Raises:
            UpstreamError: Transport failure or non-200 status
            ProtocolError: Malformed envelope or inline result
        """
        self._ensure_configured()
        query = user_query if user_query is not None else prompt_style.default_query
        invocation = WorkflowInvocation(file_id=file_id, prompt_style=prompt_style, user_query=query)
        payload = {
            "workflow_id": self.workflow_id,
            "parameters": {
                "img": file_id,
                "promptType": prompt_style.value,
                "userQuery": query,
            },
        }
        logger.info(f"Running workflow {self.workflow_id} for file {file_id} (promptType={prompt_style.value})")

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}{WORKFLOW_RUN_PATH}",
                    json=payload,
                    headers={**self._auth_headers(), "Content-Type": "application/json"},
                    timeout=self.timeout,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Workflow run transport error: {e}")
            raise UpstreamError(f"Workflow run failed: {e}") from e

        body = self._decode(response, "Workflow run")
        invocation.code = body["code"]
        invocation.msg = body.get("msg") or ""
        invocation.debug_url = body.get("debug_url") or None

        if invocation.code != 0:
            return invocation

        data = body.get("data")
        if isinstance(data, str):
            invocation.output = parse_inline_output(data)
        elif isinstance(data, dict) and data.get("execute_id"):
            invocation.execute_id = str(data["execute_id"])
        return invocation

    async def get_workflow_status(self, execute_id: str) -> WorkflowStatus:
        """
        Query the state of one workflow execution.

        Raises:
            UpstreamError: Transport failure, non-200 status or code != 0
            ProtocolError: Missing data or unknown status value
        """
        self._ensure_configured()
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}{WORKFLOW_STATUS_PATH}",
                    params={"execute_id": execute_id},
                    headers=self._auth_headers(),
                    timeout=self.timeout,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Workflow status transport error for {execute_id}: {e}")
            raise UpstreamError(f"Workflow status query failed: {e}") from e

        body = self._decode(response, "Workflow status query")
        if body["code"] != 0:
            error_msg = body.get("msg") or "Workflow status query failed"
            logger.error(f"Workflow status rejected for {execute_id} (code {body['code']}): {error_msg}")
            raise UpstreamError(error_msg, status_code=response.status_code, body=response.text)

        data = body.get("data")
        if not isinstance(data, dict):
            raise ProtocolError(f"Workflow status response has no data: {body!r}")

        state = parse_execution_state(data.get("status"), execute_id)
        output = None
        result = data.get("result")
        if isinstance(result, dict) and isinstance(result.get("output"), str):
            output = result["output"]
        return WorkflowStatus(execute_id=execute_id, state=state, output=output)
