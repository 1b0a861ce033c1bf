"""Unit tests for the notification webhook client"""

import httpx
from unittest.mock import AsyncMock, patch
from billing_engine.infrastructure.clients.notifications import NotificationClient

URL = "http://notifications.test/events"
PAYLOAD = {"event": "bill_settled", "bill_id": "b-1"}


def _response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", URL))


@patch("billing_engine.infrastructure.clients.notifications.asyncio.sleep", new_callable=AsyncMock)
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_send_event_success(mock_post: AsyncMock, mock_sleep: AsyncMock):
    mock_post.return_value = _response(202)
    client = NotificationClient(webhook_url=URL, max_retries=3, backoff_base=1.0)

    assert await client.send_event(PAYLOAD) is True
    mock_post.assert_awaited_once()
    assert mock_post.call_args.kwargs["json"] == PAYLOAD
    mock_sleep.assert_not_awaited()


@patch("billing_engine.infrastructure.clients.notifications.asyncio.sleep", new_callable=AsyncMock)
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_send_event_retries_with_backoff(mock_post: AsyncMock, mock_sleep: AsyncMock):
    mock_post.side_effect = [_response(503), httpx.ConnectError("refused"), _response(200)]
    client = NotificationClient(webhook_url=URL, max_retries=5, backoff_base=1.0)

    assert await client.send_event(PAYLOAD) is True
    assert mock_post.await_count == 3
    assert [call.args[0] for call in mock_sleep.await_args_list] == [1.0, 2.0]


@patch("billing_engine.infrastructure.clients.notifications.asyncio.sleep", new_callable=AsyncMock)
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_send_event_final_failure_is_not_raised(mock_post: AsyncMock, mock_sleep: AsyncMock):
    """Settlement already committed: delivery failure is logged and counted only"""
    mock_post.return_value = _response(500)
    client = NotificationClient(webhook_url=URL, max_retries=3, backoff_base=1.0)

    assert await client.send_event(PAYLOAD) is False
    assert mock_post.await_count == 3
    assert mock_sleep.await_count == 2


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_send_events_continues_after_failure(mock_post: AsyncMock):
    mock_post.side_effect = [_response(500), _response(200)]
    client = NotificationClient(webhook_url=URL, max_retries=1, backoff_base=0.0)

    await client.send_events([{"event": "bill_settled"}, {"event": "tenant_departed"}])

    assert mock_post.await_count == 2
    assert mock_post.call_args_list[1].kwargs["json"] == {"event": "tenant_departed"}
