"""Exception hierarchy for the image-to-prompt gateway."""

from __future__ import annotations

from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""
    pass


class ValidationError(GatewayError):
    """Inbound upload was rejected (missing file, wrong type, too large)."""
    pass


class UpstreamError(GatewayError):
    """External API answered with a non-success status or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class WorkflowConfigError(UpstreamError):
    """Workflow run was accepted structurally but failed; vendor returned a debug URL."""

    def __init__(self, message: str, debug_url: str, status_code: Optional[int] = None):
        super().__init__(
            f"Workflow configuration problem, debug link: {debug_url}. Error message: {message}",
            status_code=status_code,
        )
        self.debug_url = debug_url
        self.vendor_message = message


class WorkflowFailedError(UpstreamError):
    """Workflow execution reached the failed state."""
    pass


class GatewayConfigurationError(UpstreamError):
    """API token or workflow id is not configured."""
    pass


class ProtocolError(GatewayError):
    """External API reported success but its response broke the documented shape."""
    pass


class WorkflowTimeoutError(GatewayError):
    """Poll attempts exhausted while the workflow was still running."""
    pass


class WorkflowCancelledError(GatewayError):
    """Polling was stopped by the caller before a terminal state."""
    pass
