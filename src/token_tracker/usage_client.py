"""Async httpx client for Anthropic's OAuth usage endpoint.

The endpoint reports utilization (0-100) and reset times for the rolling
5-hour session window and the 7-day window.  Every failure path returns
``None`` so the caller falls back to local data.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from src.token_tracker.credentials import CredentialResolver

logger = logging.getLogger(__name__)

DEFAULT_USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
OAUTH_BETA = "oauth-2025-04-20"


class UsageApiError(Exception):
    """Raised when the usage endpoint is unreachable or answers badly."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Usage API error {status_code}: {detail}")


class UsageAuthError(UsageApiError):
    """Raised on 401, the token was rotated or revoked."""


# ── Wire models ──────────────────────────────────────────────────────────────


class UsageWindow(BaseModel):
    utilization: float | None = None
    resets_at: datetime | None = None


class UsageResponse(BaseModel):
    five_hour: UsageWindow | None = None
    seven_day: UsageWindow | None = None


@dataclass(frozen=True)
class ApiUsage:
    """Authoritative utilization, percentages in 0-100."""

    weekly_utilization: float
    weekly_resets_at: datetime | None
    session_utilization: float
    session_resets_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "weekly_utilization": self.weekly_utilization,
            "weekly_resets_at": self.weekly_resets_at.isoformat() if self.weekly_resets_at else None,
            "session_utilization": self.session_utilization,
            "session_resets_at": self.session_resets_at.isoformat() if self.session_resets_at else None,
        }


def parse_usage_body(content: bytes) -> ApiUsage:
    try:
        body = UsageResponse.model_validate_json(content)
    except ValidationError as e:
        raise UsageApiError(200, f"malformed body: {e.error_count()} errors")
    if body.five_hour is None and body.seven_day is None:
        raise UsageApiError(200, "body has neither five_hour nor seven_day")

    session = body.five_hour or UsageWindow()
    weekly = body.seven_day or UsageWindow()
    return ApiUsage(
        weekly_utilization=weekly.utilization or 0.0,
        weekly_resets_at=weekly.resets_at,
        session_utilization=session.utilization or 0.0,
        session_resets_at=session.resets_at,
    )


# ── Client ───────────────────────────────────────────────────────────────────


class RemoteUsageClient:
    """Fetches utilization with the Claude Code OAuth token.

    ``transport`` is passed through to ``httpx.AsyncClient`` so tests can
    plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        url: str = DEFAULT_USAGE_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._resolver = resolver
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def _request(self, access_token: str) -> ApiUsage:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "anthropic-beta": OAUTH_BETA,
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self._url, headers=headers)
        except httpx.TimeoutException:
            raise UsageApiError(0, "request timed out")
        except httpx.HTTPError as e:
            raise UsageApiError(0, f"{type(e).__name__}: {e}")

        if resp.status_code == 401:
            raise UsageAuthError(401, "unauthorized")
        if resp.status_code != 200:
            raise UsageApiError(resp.status_code, resp.text[:200])
        return parse_usage_body(resp.content)

    async def fetch_usage(self) -> ApiUsage | None:
        """Current utilization, or ``None`` if unavailable for any reason.

        A 401 triggers one forced credential refresh and a single retry.
        """
        loop = asyncio.get_running_loop()
        creds = await loop.run_in_executor(None, self._resolver.get_credentials)
        if creds is None:
            logger.debug("No usable credentials, skipping usage API")
            return None

        try:
            return await self._request(creds.access_token)
        except UsageAuthError:
            logger.info("Usage API rejected the token, forcing credential refresh")
        except UsageApiError as e:
            logger.warning("Usage API unavailable: %s", e)
            return None

        creds = await loop.run_in_executor(None, self._resolver.force_refresh)
        if creds is None:
            return None
        try:
            return await self._request(creds.access_token)
        except UsageApiError as e:
            logger.warning("Usage API unavailable after credential refresh: %s", e)
            return None
