"""Configuration loader for the image-to-prompt gateway - loads from environment variables."""

from __future__ import annotations

import os

from dotenv import load_dotenv

from .app import GatewayConfig
from .coze_client import DEFAULT_BASE_URL, mask_token


def load_config_from_env() -> GatewayConfig:
    """
    Load GatewayConfig from environment variables.

    Loads .env file if present and reads configuration values.

    Environment Variables:
        COZE_API_TOKEN: Bearer token for the Coze open API (required)
        COZE_WORKFLOW_ID: Image-to-prompt workflow id (required)
        COZE_API_BASE_URL: API base URL (default: https://api.coze.cn)
        COZE_REQUEST_TIMEOUT: Outbound request timeout in seconds (default: 30)
        MAX_UPLOAD_BYTES: Maximum image size in bytes (default: 10485760 = 10MB)
        POLL_INTERVAL_MS: Delay before each status check in milliseconds (default: 2000)
        POLL_MAX_ATTEMPTS: Number of status checks before timing out (default: 30)
        DISCONNECT_CHECK_MS: Client disconnect check interval in milliseconds (default: 1000)

    Returns:
        GatewayConfig object with values from environment
    """
    load_dotenv()

    return GatewayConfig(
        api_token=os.getenv("COZE_API_TOKEN") or None,
        workflow_id=os.getenv("COZE_WORKFLOW_ID") or None,
        api_base_url=os.getenv("COZE_API_BASE_URL", DEFAULT_BASE_URL),
        request_timeout=float(os.getenv("COZE_REQUEST_TIMEOUT", "30.0")),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
        # Polling settings
        poll_interval=float(os.getenv("POLL_INTERVAL_MS", "2000")) / 1000.0,
        poll_max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", "30")),
        disconnect_check_interval=float(os.getenv("DISCONNECT_CHECK_MS", "1000")) / 1000.0,
    )


def describe_config(config: GatewayConfig) -> dict:
    """
    Summarize configuration for startup logging.

    Returns:
        Dictionary with current settings, token masked
    """
    return {
        "api_base_url": config.api_base_url,
        "api_token": mask_token(config.api_token),
        "workflow_id": config.workflow_id or "<unset>",
        "max_upload_bytes": config.max_upload_bytes,
        "poll_interval": config.poll_interval,
        "poll_max_attempts": config.poll_max_attempts,
    }
