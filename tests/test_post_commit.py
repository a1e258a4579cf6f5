"""Tests for post-commit task isolation and outbound notifications."""

from __future__ import annotations

import json

import httpx
import pytest

from src.logistics.orders.post_commit import PostCommitTask, run_post_commit_tasks
from src.logistics.services.notifications import WebhookNotifier


class TestRunPostCommitTasks:
    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_tasks(self):
        ran: list[str] = []

        async def first():
            ran.append("first")
            raise RuntimeError("boom")

        async def second():
            ran.append("second")

        outcomes = await run_post_commit_tasks(
            [PostCommitTask("first", first), PostCommitTask("second", second)],
            order_id="o1",
        )

        assert ran == ["first", "second"]
        assert [(o.name, o.ok) for o in outcomes] == [("first", False), ("second", True)]
        assert outcomes[0].error == "boom"

    @pytest.mark.asyncio
    async def test_no_tasks(self):
        assert await run_post_commit_tasks([]) == []


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_event_body(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        notifier = WebhookNotifier(
            "https://automation.test/hook", transport=httpx.MockTransport(handler)
        )

        assert await notifier.notify("driver_assigned", {"order_id": "o1"}) is True
        body = json.loads(seen[0].content)
        assert body["event_type"] == "driver_assigned"
        assert body["order_id"] == "o1"
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_disabled_without_url(self):
        notifier = WebhookNotifier("")

        assert notifier.enabled is False
        assert await notifier.notify("order_confirmation", {}) is False

    @pytest.mark.asyncio
    async def test_error_response_raises(self):
        notifier = WebhookNotifier(
            "https://automation.test/hook",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await notifier.notify("order_status_changed", {"order_id": "o1"})
