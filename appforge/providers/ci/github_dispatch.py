from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from appforge.core.config import get_settings
from appforge.core.errors import CiConfigError, CiDispatchError
from appforge.providers.ci.base import CiTrigger, CiTriggerResult, build_dispatch_payload
from appforge.services.resilience import CI_DISPATCH, breaker_for, retry_async
from appforge.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


class GitHubDispatchProvider:
    """Trigger mobile builds through GitHub ``repository_dispatch``.

    GitHub answers 204 with no body, so the dispatched build id is what the
    workflow reports back on every callback.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _dispatch_url(self) -> str:
        if self._settings.ci_dispatch_url:
            return self._settings.ci_dispatch_url
        return (
            f"https://api.github.com/repos/{self._settings.ci_repo_owner}"
            f"/{self._settings.ci_repo_name}/dispatches"
        )

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        # An injected client belongs to the caller; otherwise open one per dispatch.
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._settings.ext_call_timeout_ms / 1000.0) as client:
            yield client

    async def trigger_build(self, trigger: CiTrigger) -> CiTriggerResult:
        token = self._settings.ci_dispatch_token
        if not token or not token.strip():
            raise CiConfigError("CI_DISPATCH_TOKEN is required for GitHub dispatch")

        payload = build_dispatch_payload(trigger)
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token.strip()}",
            "X-GitHub-Api-Version": self._settings.ci_github_api_version,
        }
        url = self._dispatch_url()
        start = time.monotonic()

        def _elapsed_ms() -> float:
            return (time.monotonic() - start) * 1000.0

        try:
            async with breaker_for(CI_DISPATCH).guard(), self._client_scope() as client:

                async def _call() -> httpx.Response:
                    response = await client.post(url, json=payload, headers=headers)
                    if response.status_code >= 400:
                        # 5xx is retried and trips the breaker; 4xx (bad token, unknown repo) does neither.
                        raise CiDispatchError(
                            f"CI dispatch failed: HTTP {response.status_code}: {response.text[:500]}",
                            status_code=response.status_code,
                        )
                    return response

                response = await retry_async(_call, integration=CI_DISPATCH)
        except CiDispatchError as exc:
            record_external_call(integration=CI_DISPATCH, latency_ms=_elapsed_ms(), success=False)
            logger.warning("ci_dispatch_rejected build_id=%s status=%s", trigger.build_id, exc.status_code)
            raise
        except (httpx.HTTPError, TimeoutError) as exc:
            record_external_call(integration=CI_DISPATCH, latency_ms=_elapsed_ms(), success=False)
            logger.warning("ci_dispatch_request_failed build_id=%s", trigger.build_id, exc_info=exc)
            raise CiDispatchError(f"CI dispatch failed: {exc.__class__.__name__}: {exc}") from exc

        record_external_call(integration=CI_DISPATCH, latency_ms=_elapsed_ms(), success=True)
        ci_build_id = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("id") is not None:
                ci_build_id = str(body["id"])
        return CiTriggerResult(ci_build_id=ci_build_id, status_code=response.status_code)
