"""Workflow invocation and status polling on top of CozeClient."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .coze_client import CozeClient
from .errors import (
    ProtocolError,
    UpstreamError,
    WorkflowCancelledError,
    WorkflowConfigError,
    WorkflowFailedError,
    WorkflowTimeoutError,
)
from .models import ExecutionState, PromptStyle, UploadedAsset, WorkflowInvocation

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_MAX_ATTEMPTS = 30


class WorkflowPoller:
    """Polls a workflow execution until it reaches a terminal state."""

    def __init__(
        self,
        client: CozeClient,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
    ):
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts

    async def _pause(self, execute_id: str, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await asyncio.sleep(self.interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return
        logger.info(f"Polling of execution {execute_id} cancelled by caller")
        raise WorkflowCancelledError(f"Polling of workflow execution {execute_id} was cancelled")

    async def poll(self, execute_id: str, cancel_event: Optional[asyncio.Event] = None) -> str:
        """
        Wait for an execution to finish and return its output text.

        Each attempt waits one interval and then queries the status once.
        Only a running state is retried; any status-level error ends polling.

        Args:
            execute_id: Execution id returned by the workflow run
            cancel_event: Optional event; setting it stops polling early

        Returns:
            Generated output text

        Raises:
            WorkflowFailedError: Execution reported failed
            WorkflowTimeoutError: Still running after max_attempts polls
            WorkflowCancelledError: cancel_event was set
            ProtocolError: Success without output
            UpstreamError: Status query failed
        """
        for attempt in range(self.max_attempts):
            if cancel_event is not None and cancel_event.is_set():
                raise WorkflowCancelledError(f"Polling of workflow execution {execute_id} was cancelled")
            await self._pause(execute_id, cancel_event)

            status = await self.client.get_workflow_status(execute_id)
            if status.state is ExecutionState.SUCCESS:
                if not status.output:
                    raise ProtocolError(
                        f"Workflow execution {execute_id} succeeded but returned no output"
                    )
                logger.info(f"Execution {execute_id} succeeded after {attempt + 1} status checks")
                return status.output
            if status.state is ExecutionState.FAILED:
                logger.error(f"Execution {execute_id} failed (attempt {attempt + 1}/{self.max_attempts})")
                raise WorkflowFailedError(f"Workflow execution {execute_id} failed")

            logger.debug(f"Execution {execute_id} still running (attempt {attempt + 1}/{self.max_attempts})")

        total_wait = self.interval * self.max_attempts
        logger.error(f"Execution {execute_id} timed out after {self.max_attempts} status checks")
        raise WorkflowTimeoutError(
            f"Workflow execution timed out after {self.max_attempts} status checks "
            f"({total_wait:g}s), please try again later"
        )


class WorkflowRunner:
    """Runs the full upload, invoke and poll sequence for one image."""

    def __init__(self, client: CozeClient, poller: Optional[WorkflowPoller] = None):
        self.client = client
        self.poller = poller or WorkflowPoller(client)

    async def invoke(
        self,
        file_id: str,
        prompt_style: PromptStyle = PromptStyle.GENERAL,
        user_query: Optional[str] = None,
    ) -> WorkflowInvocation:
        """
        Submit the workflow and classify its response.

        Returns an invocation carrying either inline output or an execute id.

        Raises:
            WorkflowConfigError: Non-zero code with a debug URL
            UpstreamError: Non-zero code without a debug URL
            ProtocolError: Zero code with neither output nor execute id
        """
        invocation = await self.client.run_workflow(file_id, prompt_style, user_query)

        if invocation.code != 0:
            if invocation.debug_url:
                logger.error(
                    f"Workflow accepted but failed (code {invocation.code}), debug_url: {invocation.debug_url}"
                )
                raise WorkflowConfigError(invocation.msg or "unknown error", debug_url=invocation.debug_url)
            logger.error(f"Workflow failed to start (code {invocation.code}): {invocation.msg}")
            raise UpstreamError(invocation.msg or "Workflow failed to start")

        if not invocation.output and not invocation.execute_id:
            raise ProtocolError("Workflow run succeeded but returned neither a result nor an execute_id")
        return invocation

    async def image_to_prompt(
        self,
        asset: UploadedAsset,
        prompt_style: PromptStyle = PromptStyle.GENERAL,
        user_query: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """Upload the image, run the workflow and return the generated prompt."""
        handle = await self.client.upload_file(asset)
        invocation = await self.invoke(handle.file_id, prompt_style, user_query)

        if invocation.has_inline_result:
            logger.info(f"Workflow returned an inline result for file {handle.file_id}")
            return invocation.output

        logger.info(f"Workflow started, execute_id: {invocation.execute_id}")
        return await self.poller.poll(invocation.execute_id, cancel_event=cancel_event)
