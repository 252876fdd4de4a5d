"""
Slack connector.

Non-tabular: exposes workspace users, channels and channel history through
the Slack Web API using the bot token from ``SLACK_BOT_TOKEN``. User and
channel lists are rate-limited upstream, so they are served through a
stale-while-revalidate cache.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping

from ..errors import ConnectorError, ConnectorRequestError
from .base import ConnectionTestResult, ConnectorCapabilities, ConnectorMetadata, NonTabularConnector
from .cache import StaleWhileRevalidateCache

SLACK_API_URL = "https://slack.com/api"
DEFAULT_PAGE_SIZE = 200


class SlackConnector(NonTabularConnector):
    metadata = ConnectorMetadata(
        id="slack",
        name="Slack",
        description="Workspace users and channels for staff and partner mapping",
        icon="MessageSquare",
        auth_type="api_key",
        capabilities=ConnectorCapabilities(has_tabs=False),
    )

    def __init__(
        self,
        *,
        bot_token: str | None = None,
        cache_fresh_seconds: float = 300,
        cache_stale_seconds: float = 600,
        cache: StaleWhileRevalidateCache | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._bot_token = bot_token
        self.cache = cache or StaleWhileRevalidateCache(
            fresh_seconds=cache_fresh_seconds,
            stale_seconds=cache_stale_seconds,
        )

    @property
    def bot_token(self) -> str | None:
        return self._bot_token or os.environ.get("SLACK_BOT_TOKEN")

    def validate_config(self, config: Mapping[str, Any]):
        if not self.bot_token:
            return "SLACK_BOT_TOKEN environment variable is required"
        return True

    def _call(self, method: str, *, http_method: str = "GET", **params) -> Mapping[str, Any]:
        if not self.bot_token:
            raise ConnectorError("SLACK_BOT_TOKEN environment variable is required")
        clean = {key: value for key, value in params.items() if value is not None}
        if http_method == "GET":
            payload = self._request("GET", f"{SLACK_API_URL}/{method}", token=self.bot_token, params=clean)
        else:
            payload = self._request(http_method, f"{SLACK_API_URL}/{method}", token=self.bot_token, json=clean)
        if not payload.get("ok"):
            raise ConnectorRequestError(f"Slack API {method} failed: {payload.get('error', 'unknown_error')}")
        return payload

    def _paginate(self, method: str, item_key: str, **params) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        cursor = None
        while True:
            payload = self._call(method, cursor=cursor, limit=DEFAULT_PAGE_SIZE, **params)
            items.extend(payload.get(item_key, []))
            cursor = (payload.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return items

    def test_connection(self, token: str, config: Any) -> ConnectionTestResult:
        try:
            info = self._call("auth.test")
        except ConnectorError as exc:
            return ConnectionTestResult(success=False, error=str(exc))
        return ConnectionTestResult(success=True, details={"source_name": info.get("team")})

    # Domain methods --------------------------------------------------------------

    def _fetch_users(self, *, include_bots: bool, include_deleted: bool) -> List[Dict[str, Any]]:
        users = self._paginate("users.list", "members")
        return [
            user
            for user in users
            if (include_bots or not (user.get("is_bot") or user.get("id") == "USLACKBOT"))
            and (include_deleted or not user.get("deleted"))
        ]

    def list_users(self, *, include_bots: bool = False, include_deleted: bool = False) -> List[Dict[str, Any]]:
        """Workspace users; bots and deactivated accounts bypass the cache."""
        if include_bots or include_deleted:
            return self._fetch_users(include_bots=include_bots, include_deleted=include_deleted)
        return self.cache.get(
            "users",
            lambda: self._fetch_users(include_bots=False, include_deleted=False),
        )

    def list_channels(self) -> List[Dict[str, Any]]:
        return self.cache.get(
            "channels",
            lambda: self._paginate(
                "conversations.list",
                "channels",
                types="public_channel,private_channel",
                exclude_archived="true",
            ),
        )

    def get_channel_history(
        self, channel_id: str, oldest: str | None = None, limit: int | None = None
    ) -> List[Dict[str, Any]]:
        payload = self._call("conversations.history", channel=channel_id, oldest=oldest, limit=limit)
        return payload.get("messages", [])

    def get_channel_members(self, channel_id: str) -> List[str]:
        return self._paginate("conversations.members", "members", channel=channel_id)

    def join_channel(self, channel_id: str) -> Mapping[str, Any]:
        payload = self._call("conversations.join", http_method="POST", channel=channel_id)
        return payload.get("channel", {})

    def invalidate_caches(self) -> None:
        self.cache.invalidate()
