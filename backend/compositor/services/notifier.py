"""Best-effort completion callbacks."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from compositor.schemas.job import CallbackPayload

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, timeout_s: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.timeout_s = timeout_s
        self._transport = transport

    async def _post(self, url: str, payload: CallbackPayload) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            return await client.post(url, json=payload.model_dump(mode="json"))

    def send(self, url: str, payload: CallbackPayload) -> bool:
        """POST ``payload`` to ``url``; failures are logged and reported as ``False``.

        ``timeout_s`` bounds the whole exchange, not each connect or read phase.
        Called from worker threads, which have no running event loop.
        """
        try:
            resp = asyncio.run(asyncio.wait_for(self._post(url, payload), timeout=self.timeout_s))
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("callback to %s for job %s timed out after %ss", url, payload.job_id, self.timeout_s)
            return False
        except httpx.HTTPError as exc:
            logger.warning("callback to %s for job %s failed: %s", url, payload.job_id, exc)
            return False

        if resp.status_code >= 400:
            logger.warning(
                "callback to %s for job %s rejected: %s %s", url, payload.job_id, resp.status_code, resp.text[:200]
            )
            return False
        return True
