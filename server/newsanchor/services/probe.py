from __future__ import annotations

import logging
from typing import Optional

import httpx

from newsanchor.services.models import RemoteJob


logger = logging.getLogger(__name__)


class UrlProbe:
    """HEAD-checks provider result URLs before a job is declared complete.

    Providers occasionally report "completed" before the asset is served, so a
    completed job only counts once its URL answers with a non-error status.
    Uses its own client so provider credentials never reach CDN hosts.
    """

    def __init__(self, *, http_client: Optional[httpx.AsyncClient] = None, timeout_seconds: float = 15.0) -> None:
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)

    async def is_live(self, url: Optional[str]) -> bool:
        if not url or not url.startswith(("http://", "https://")):
            return False
        try:
            response = await self._http.head(url)
        except httpx.HTTPError as exc:
            logger.info("Result URL %s not reachable: %s", url, exc)
            return False
        if response.status_code >= 400:
            logger.info("Result URL %s answered HTTP %d", url, response.status_code)
            return False
        return True

    async def __call__(self, job: RemoteJob) -> bool:
        return await self.is_live(job.result_url)

    async def aclose(self) -> None:
        await self._http.aclose()
