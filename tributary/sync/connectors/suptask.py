"""
SupTask ticketing connector.

Non-tabular: tickets are read through the SupTask REST API configured by
``SUPTASK_API_BASE_URL`` and ``SUPTASK_API_TOKEN``.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping

from ..errors import ConnectorError, ConnectorRequestError
from .base import ConnectionTestResult, ConnectorCapabilities, ConnectorMetadata, NonTabularConnector, SourceTab


class SupTaskConnector(NonTabularConnector):
    metadata = ConnectorMetadata(
        id="suptask",
        name="SupTask",
        description="Support tickets raised through SupTask",
        icon="Ticket",
        auth_type="api_key",
        capabilities=ConnectorCapabilities(has_tabs=False),
    )

    def __init__(self, *, base_url: str | None = None, api_token: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._base_url = base_url
        self._api_token = api_token

    @property
    def base_url(self) -> str | None:
        value = self._base_url or os.environ.get("SUPTASK_API_BASE_URL")
        return value.rstrip("/") if value else None

    @property
    def api_token(self) -> str | None:
        return self._api_token or os.environ.get("SUPTASK_API_TOKEN")

    def validate_config(self, config: Mapping[str, Any]):
        if not self.base_url:
            return "SUPTASK_API_BASE_URL environment variable is required"
        if not self.api_token:
            return "SUPTASK_API_TOKEN environment variable is required"
        return True

    def _ensure_ready(self) -> None:
        outcome = self.validate_config({})
        if outcome is not True:
            raise ConnectorError(outcome)

    def get_tabs(self, token: str, config: Any) -> List[SourceTab]:
        # Informational only; tickets are read through the domain methods.
        return [SourceTab(id="tickets", title="Tickets")]

    def list_tickets(self, *, status: str | None = None, limit: int | None = None) -> List[Dict[str, Any]]:
        self._ensure_ready()
        params = {key: value for key, value in (("status", status), ("limit", limit)) if value is not None}
        payload = self._request("GET", f"{self.base_url}/tickets", token=self.api_token, params=params)
        if isinstance(payload, list):
            return payload
        return payload.get("tickets", [])

    def get_ticket(self, ticket_number: int | str) -> Dict[str, Any] | None:
        self._ensure_ready()
        return self._request(
            "GET",
            f"{self.base_url}/tickets/{ticket_number}",
            token=self.api_token,
            allow_not_found=True,
        )

    def test_connection(self, token: str, config: Any) -> ConnectionTestResult:
        try:
            tickets = self.list_tickets(limit=1)
        except ConnectorRequestError as exc:
            if exc.status_code == 401:
                return ConnectionTestResult(success=False, error="Invalid SupTask API token")
            if exc.status_code == 403:
                return ConnectionTestResult(success=False, error="SupTask token lacks required permissions")
            return ConnectionTestResult(success=False, error=str(exc))
        except ConnectorError as exc:
            return ConnectionTestResult(success=False, error=str(exc))
        sample = tickets[0].get("ticket_number") if tickets else None
        return ConnectionTestResult(success=True, details={"source_name": "SupTask", "sample_ticket_number": sample})
