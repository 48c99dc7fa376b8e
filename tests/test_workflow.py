"""Tests for workflow invocation and status polling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from image_prompt_gateway.coze_client import CozeClient
from image_prompt_gateway.errors import (
    ProtocolError,
    UpstreamError,
    WorkflowCancelledError,
    WorkflowConfigError,
    WorkflowFailedError,
    WorkflowTimeoutError,
)
from image_prompt_gateway.models import (
    ExecutionState,
    PromptStyle,
    RemoteFileHandle,
    UploadedAsset,
    WorkflowInvocation,
    WorkflowStatus,
)
from image_prompt_gateway.workflow import WorkflowPoller, WorkflowRunner


def running():
    return WorkflowStatus(execute_id="e1", state=ExecutionState.RUNNING)


def succeeded(output="a cat on a red sofa"):
    return WorkflowStatus(execute_id="e1", state=ExecutionState.SUCCESS, output=output)


def failed():
    return WorkflowStatus(execute_id="e1", state=ExecutionState.FAILED)


def invocation(**kwargs):
    defaults = {"file_id": "f1", "prompt_style": PromptStyle.GENERAL, "user_query": "q", "code": 0}
    defaults.update(kwargs)
    return WorkflowInvocation(**defaults)


@pytest.fixture
def mock_client():
    client = MagicMock(spec=CozeClient)
    client.upload_file = AsyncMock(return_value=RemoteFileHandle(file_id="f1"))
    client.run_workflow = AsyncMock()
    client.get_workflow_status = AsyncMock()
    return client


@pytest.fixture
def asset():
    return UploadedAsset(content=b"jpeg", content_type="image/jpeg", size=4, filename="cat.jpg")


@pytest.mark.asyncio
async def test_poll_waits_fixed_interval_until_success(mock_client):
    mock_client.get_workflow_status.side_effect = [running(), running(), succeeded()]
    poller = WorkflowPoller(mock_client, interval=2.0, max_attempts=30)

    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        output = await poller.poll("e1")

    assert output == "a cat on a red sofa"
    assert mock_client.get_workflow_status.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [2.0, 2.0, 2.0]


@pytest.mark.asyncio
async def test_poll_stops_on_failed(mock_client):
    mock_client.get_workflow_status.side_effect = [running(), failed(), succeeded()]
    poller = WorkflowPoller(mock_client, interval=0, max_attempts=30)

    with pytest.raises(WorkflowFailedError):
        await poller.poll("e1")

    assert mock_client.get_workflow_status.call_count == 2


@pytest.mark.asyncio
async def test_poll_times_out_after_max_attempts(mock_client):
    mock_client.get_workflow_status.return_value = running()
    poller = WorkflowPoller(mock_client, interval=0, max_attempts=30)

    with pytest.raises(WorkflowTimeoutError, match="30 status checks"):
        await poller.poll("e1")

    assert mock_client.get_workflow_status.call_count == 30


@pytest.mark.asyncio
async def test_poll_success_without_output_is_protocol_error(mock_client):
    mock_client.get_workflow_status.return_value = succeeded(output=None)
    poller = WorkflowPoller(mock_client, interval=0, max_attempts=5)

    with pytest.raises(ProtocolError):
        await poller.poll("e1")


@pytest.mark.asyncio
async def test_poll_status_error_is_fatal(mock_client):
    """Status-level failures are not retried."""
    mock_client.get_workflow_status.side_effect = [running(), UpstreamError("status query failed"), succeeded()]
    poller = WorkflowPoller(mock_client, interval=0, max_attempts=30)

    with pytest.raises(UpstreamError):
        await poller.poll("e1")

    assert mock_client.get_workflow_status.call_count == 2


@pytest.mark.asyncio
async def test_poll_cancel_event_stops_wait_early(mock_client):
    mock_client.get_workflow_status.return_value = running()
    poller = WorkflowPoller(mock_client, interval=60.0, max_attempts=30)
    cancel_event = asyncio.Event()

    async def cancel_soon():
        await asyncio.sleep(0.01)
        cancel_event.set()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(WorkflowCancelledError):
        await asyncio.wait_for(poller.poll("e1", cancel_event=cancel_event), timeout=5.0)
    await canceller

    mock_client.get_workflow_status.assert_not_called()


@pytest.mark.asyncio
async def test_poll_already_cancelled(mock_client):
    poller = WorkflowPoller(mock_client, interval=0, max_attempts=30)
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(WorkflowCancelledError):
        await poller.poll("e1", cancel_event=cancel_event)

    mock_client.get_workflow_status.assert_not_called()


@pytest.mark.asyncio
async def test_poll_with_unset_cancel_event_completes(mock_client):
    mock_client.get_workflow_status.side_effect = [running(), succeeded()]
    poller = WorkflowPoller(mock_client, interval=0.001, max_attempts=30)

    output = await poller.poll("e1", cancel_event=asyncio.Event())

    assert output == "a cat on a red sofa"


@pytest.mark.asyncio
async def test_invoke_debug_url_raises_config_error(mock_client):
    mock_client.run_workflow.return_value = invocation(
        code=1, msg="config error", debug_url="https://www.coze.cn/work_flow?execute_id=9"
    )
    runner = WorkflowRunner(mock_client, WorkflowPoller(mock_client, interval=0))

    with pytest.raises(WorkflowConfigError) as exc_info:
        await runner.invoke("f1")

    assert "https://www.coze.cn/work_flow?execute_id=9" in str(exc_info.value)
    assert "config error" in str(exc_info.value)
    assert exc_info.value.debug_url == "https://www.coze.cn/work_flow?execute_id=9"


@pytest.mark.asyncio
async def test_invoke_plain_failure(mock_client):
    mock_client.run_workflow.return_value = invocation(code=4000, msg="invalid parameter")
    runner = WorkflowRunner(mock_client)

    with pytest.raises(UpstreamError, match="invalid parameter") as exc_info:
        await runner.invoke("f1")

    assert not isinstance(exc_info.value, WorkflowConfigError)
    mock_client.run_workflow.assert_called_once()


@pytest.mark.asyncio
async def test_invoke_success_without_result_or_execute_id(mock_client):
    mock_client.run_workflow.return_value = invocation(code=0)
    runner = WorkflowRunner(mock_client)

    with pytest.raises(ProtocolError):
        await runner.invoke("f1")


@pytest.mark.asyncio
async def test_image_to_prompt_inline_result_skips_poller(mock_client, asset):
    mock_client.run_workflow.return_value = invocation(output="inline prompt")
    poller = MagicMock(spec=WorkflowPoller)
    poller.poll = AsyncMock()
    runner = WorkflowRunner(mock_client, poller)

    prompt = await runner.image_to_prompt(asset)

    assert prompt == "inline prompt"
    poller.poll.assert_not_called()
    mock_client.get_workflow_status.assert_not_called()


@pytest.mark.asyncio
async def test_image_to_prompt_polls_execute_id(mock_client, asset):
    mock_client.run_workflow.return_value = invocation(execute_id="e1")
    mock_client.get_workflow_status.side_effect = [running(), succeeded()]
    runner = WorkflowRunner(mock_client, WorkflowPoller(mock_client, interval=0))

    prompt = await runner.image_to_prompt(asset, PromptStyle.STABLE, "short please")

    assert prompt == "a cat on a red sofa"
    mock_client.upload_file.assert_called_once_with(asset)
    mock_client.run_workflow.assert_called_once_with("f1", PromptStyle.STABLE, "short please")
    mock_client.get_workflow_status.assert_called_with("e1")


@pytest.mark.asyncio
async def test_image_to_prompt_upload_failure_never_invokes(mock_client, asset):
    mock_client.upload_file.side_effect = UpstreamError("file upload rejected")
    runner = WorkflowRunner(mock_client)

    with pytest.raises(UpstreamError):
        await runner.image_to_prompt(asset)

    mock_client.run_workflow.assert_not_called()
