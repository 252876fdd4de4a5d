"""
Google Workspace directory connector.

Non-tabular: lists directory users through the Admin SDK Directory API. The
admin access token comes from ``GOOGLE_WORKSPACE_ADMIN_TOKEN``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping
from urllib.parse import quote

from ..errors import ConnectorError
from .base import ConnectionTestResult, ConnectorCapabilities, ConnectorMetadata, NonTabularConnector
from .cache import StaleWhileRevalidateCache

DIRECTORY_API_URL = "https://admin.googleapis.com/admin/directory/v1"


@dataclass(frozen=True)
class GoogleWorkspaceConfig:
    domain: str


class GoogleWorkspaceConnector(NonTabularConnector):
    metadata = ConnectorMetadata(
        id="google_workspace",
        name="Google Workspace",
        description="Directory users for staff matching",
        icon="Users",
        auth_type="service_account",
        oauth_scopes=("https://www.googleapis.com/auth/admin.directory.user.readonly",),
        capabilities=ConnectorCapabilities(has_tabs=False),
    )

    def __init__(
        self,
        *,
        admin_token: str | None = None,
        cache_fresh_seconds: float = 600,
        cache_stale_seconds: float = 1200,
        cache: StaleWhileRevalidateCache | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._admin_token = admin_token
        self.cache = cache or StaleWhileRevalidateCache(
            fresh_seconds=cache_fresh_seconds,
            stale_seconds=cache_stale_seconds,
        )

    @property
    def admin_token(self) -> str | None:
        return self._admin_token or os.environ.get("GOOGLE_WORKSPACE_ADMIN_TOKEN")

    def validate_config(self, config: Mapping[str, Any]):
        if not self.admin_token:
            return "GOOGLE_WORKSPACE_ADMIN_TOKEN environment variable is required"
        if not (config.get("domain") or os.environ.get("GOOGLE_WORKSPACE_DOMAIN")):
            return "A Workspace domain is required (config 'domain' or GOOGLE_WORKSPACE_DOMAIN)"
        return True

    def _build_config(self, payload: Mapping[str, Any]) -> GoogleWorkspaceConfig:
        return GoogleWorkspaceConfig(domain=payload.get("domain") or os.environ.get("GOOGLE_WORKSPACE_DOMAIN", ""))

    def _fetch_users(self, domain: str) -> List[Dict[str, Any]]:
        if not self.admin_token:
            raise ConnectorError("GOOGLE_WORKSPACE_ADMIN_TOKEN environment variable is required")
        users: List[Dict[str, Any]] = []
        page_token = None
        while True:
            params = {"domain": domain, "maxResults": 500, "projection": "basic", "orderBy": "email"}
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", f"{DIRECTORY_API_URL}/users", token=self.admin_token, params=params)
            users.extend(payload.get("users", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return users

    def list_directory_users(
        self, config: GoogleWorkspaceConfig, *, include_suspended: bool = False
    ) -> List[Dict[str, Any]]:
        users = self.cache.get(("users", config.domain), lambda: self._fetch_users(config.domain))
        if include_suspended:
            return list(users)
        return [user for user in users if not user.get("suspended")]

    def get_user_by_email(self, email_or_id: str) -> Dict[str, Any] | None:
        if not self.admin_token:
            raise ConnectorError("GOOGLE_WORKSPACE_ADMIN_TOKEN environment variable is required")
        return self._request(
            "GET",
            f"{DIRECTORY_API_URL}/users/{quote(email_or_id, safe='@.')}",
            token=self.admin_token,
            allow_not_found=True,
        )

    def test_connection(self, token: str, config: GoogleWorkspaceConfig) -> ConnectionTestResult:
        try:
            users = self._fetch_users(config.domain)
        except ConnectorError as exc:
            return ConnectionTestResult(success=False, error=str(exc))
        return ConnectionTestResult(success=True, details={"source_name": config.domain, "user_count": len(users)})
