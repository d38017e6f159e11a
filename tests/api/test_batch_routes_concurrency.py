"""Monthly billing routes run off the event loop and keep the caller's org."""

import asyncio
import time

import httpx

from core.models import BatchResult
from utils.org_context import get_current_org_id

BATCH_SECONDS = 0.5


def _measure_loop_gaps(app, path: str) -> tuple[int, float]:
    """POST to path while a ticker runs; return the status and the largest gap between ticks."""

    async def scenario():
        gaps = []
        done = asyncio.Event()

        async def ticker():
            last = time.monotonic()
            while not done.is_set():
                await asyncio.sleep(0.02)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            http.cookies.set("session_token", "test-token")
            tick_task = asyncio.create_task(ticker())
            response = await http.post(path)
            done.set()
            await tick_task
        return response.status_code, max(gaps)

    return asyncio.run(scenario())


class TestBatchRoutesOffLoop:

    def test_auto_generate_does_not_stall_loop(self, app, services):
        def slow_batch(**kwargs):
            time.sleep(BATCH_SECONDS)
            return BatchResult()

        services["monthly_billing"].run_batch.side_effect = slow_batch

        status, largest_gap = _measure_loop_gaps(app, "/api/invoices/auto-generate-monthly")

        assert status == 200
        assert largest_gap < BATCH_SECONDS / 2

    def test_batch_runs_in_request_org(self, client, services, test_org_id):
        seen = []

        def record_org(**kwargs):
            seen.append(get_current_org_id())
            return BatchResult()

        services["monthly_billing"].run_batch.side_effect = record_org

        response = client.post("/api/invoices/auto-generate-monthly")

        assert response.status_code == 200
        assert seen == [test_org_id]
