from unittest.mock import AsyncMock, patch

import httpx
import pytest

from userbase.services.alerts import AlertNotifier

WEBHOOK = "https://alerts.test/hook"


@pytest.mark.asyncio
async def test_without_webhook_nothing_is_sent():
    with patch.object(httpx.AsyncClient, "post", AsyncMock()) as post:
        assert await AlertNotifier(None).notify({"type": "userbase_merge_failed"}) is False
    post.assert_not_awaited()


@pytest.mark.asyncio
async def test_posts_payload():
    response = httpx.Response(200, request=httpx.Request("POST", WEBHOOK))
    with patch.object(httpx.AsyncClient, "post", AsyncMock(return_value=response)) as post:
        assert await AlertNotifier(WEBHOOK).notify({"type": "userbase_merge_failed"}) is True

    post.assert_awaited_once_with(WEBHOOK, json={"type": "userbase_merge_failed"})


@pytest.mark.asyncio
async def test_delivery_failure_is_reported_not_raised():
    with patch.object(httpx.AsyncClient, "post", AsyncMock(side_effect=httpx.ConnectError("refused"))):
        assert await AlertNotifier(WEBHOOK).notify({"type": "x"}) is False
