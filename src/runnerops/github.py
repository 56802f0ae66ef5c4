"""
Narrow GitHub REST client for repository-scoped runners.

Only the calls the health checks and diagnostics need. Every call returns
an ``ApiResponse`` instead of raising, so callers can map HTTP status codes
to their own result types. Transport errors come back with
``status_code=None``.

Usage::

    with GitHubClient.from_config(config) as gh:
        resp = gh.list_runners("owner/repo")
        if resp.status_code == 200:
            print(resp.data["total_count"])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from runnerops.contracts.timeouts import GITHUB_API_TIMEOUT_S

__all__ = ["ApiResponse", "GitHubClient"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiResponse:
    """Status code and decoded JSON body (None when not JSON)."""

    status_code: Optional[int]
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class GitHubClient:
    """GitHub REST client authenticated with a personal access token."""

    def __init__(
        self,
        token: Optional[str],
        api_url: str = "https://api.github.com",
        timeout: float = GITHUB_API_TIMEOUT_S,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        Args:
            token: Personal access token; unauthenticated when None
            api_url: API base URL
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests pass ``httpx.MockTransport``)
        """
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.Client] = None

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.BaseTransport] = None) -> "GitHubClient":
        return cls(
            token=config.github_token,
            api_url=config.github_api_url,
            timeout=config.http_timeout_s,
            transport=transport,
        )

    def __enter__(self) -> "GitHubClient":
        self._client()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        if self._http:
            self._http.close()
            self._http = None

    def _client(self) -> httpx.Client:
        if self._http is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "runnerops",
            }
            if self.token:
                headers["Authorization"] = f"token {self.token}"
            self._http = httpx.Client(
                base_url=self.api_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http

    def _request(self, method: str, path: str, **kwargs) -> ApiResponse:
        try:
            response = self._client().request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning("GitHub %s %s failed: %s", method, path, e)
            return ApiResponse(status_code=None, error=str(e) or type(e).__name__)
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = response.text
        logger.debug("GitHub %s %s -> %s", method, path, response.status_code)
        return ApiResponse(status_code=response.status_code, data=data)

    # -- endpoints -----------------------------------------------------------

    def zen(self) -> ApiResponse:
        return self._request("GET", "/zen")

    def get_user(self) -> ApiResponse:
        return self._request("GET", "/user")

    def get_repository(self, slug: str) -> ApiResponse:
        return self._request("GET", f"/repos/{slug}")

    def list_runners(self, slug: str) -> ApiResponse:
        return self._request("GET", f"/repos/{slug}/actions/runners")

    def create_registration_token(self, slug: str) -> ApiResponse:
        return self._request("POST", f"/repos/{slug}/actions/runners/registration-token")

    def delete_runner(self, slug: str, runner_id: int) -> ApiResponse:
        return self._request("DELETE", f"/repos/{slug}/actions/runners/{runner_id}")

    def list_workflow_runs(self, slug: str, per_page: int = 10) -> ApiResponse:
        return self._request("GET", f"/repos/{slug}/actions/runs", params={"per_page": per_page})
