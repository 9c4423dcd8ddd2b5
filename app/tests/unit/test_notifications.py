import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from celery.exceptions import Retry

from app.services import notifications
from app.services.tasks import deliver_notification


class TestSend:

    @pytest.mark.asyncio
    async def test_delivers_through_mail_api(self, test_settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "msg-1"})

        ok = await notifications.send(
            "Payment confirmed", "<p>Thanks</p>", "ana@example.com",
            settings=test_settings, transport=httpx.MockTransport(handler),
        )

        assert ok is True
        body = json.loads(seen[0].content)
        assert body["to"] == ["ana@example.com"]
        assert body["subject"] == "Payment confirmed"
        assert seen[0].headers["Authorization"] == "Bearer mail-key"

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, test_settings):
        responses = iter([httpx.Response(502), httpx.Response(202)])

        ok = await notifications.send(
            "Subject", "<p>x</p>", "ana@example.com",
            settings=test_settings, backoff=0, transport=httpx.MockTransport(lambda request: next(responses)),
        )

        assert ok is True

    @pytest.mark.asyncio
    async def test_gives_up_without_raising(self, test_settings):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("mail server down", request=request)

        ok = await notifications.send(
            "Subject", "<p>x</p>", "ana@example.com",
            settings=test_settings, retries=3, backoff=0, transport=httpx.MockTransport(handler),
        )

        assert ok is False
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_empty_recipient_is_skipped(self, test_settings):
        ok = await notifications.send("Subject", "<p>x</p>", "", settings=test_settings)

        assert ok is False


class TestNotify:

    def test_queues_delivery(self, sent_notifications):
        assert notifications.notify("Subject", "<p>x</p>", "ana@example.com") is True

        sent_notifications.assert_called_once_with("Subject", "<p>x</p>", "ana@example.com")

    def test_skips_missing_recipient(self, sent_notifications):
        assert notifications.notify("Subject", "<p>x</p>", None) is False

        sent_notifications.assert_not_called()

    def test_broker_failure_is_logged_not_raised(self, sent_notifications):
        sent_notifications.side_effect = ConnectionError("broker down")

        assert notifications.notify("Subject", "<p>x</p>", "ana@example.com") is False


class TestDeliverTask:

    def test_task_runs_send(self):
        with patch("app.services.notifications.send", AsyncMock(return_value=True)) as send:
            result = deliver_notification.run("Subject", "<p>x</p>", "ana@example.com")

        assert result is True
        send.assert_awaited_once_with("Subject", "<p>x</p>", "ana@example.com", retries=1)

    def test_undelivered_mail_is_retried_by_the_worker(self):
        with patch("app.services.notifications.send", AsyncMock(return_value=False)) as send:
            with pytest.raises(Retry):
                deliver_notification.run("Subject", "<p>x</p>", "ana@example.com")

        assert send.await_count == 1
