"""HTTP client shared by tool handlers for the external REST services."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from kronus.chat.logging_utils import should_log_feature

logger = logging.getLogger(__name__)


class ToolServiceError(Exception):
    """A tool service answered with a failure indicator."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ServiceClient:
    """Thin wrapper over ``httpx.AsyncClient`` with error-body interpretation."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self.http_client = http_client

    @classmethod
    def from_config(cls, services_config: dict[str, Any]) -> ServiceClient:
        return cls(
            httpx.AsyncClient(
                base_url=services_config["base_url"],
                timeout=httpx.Timeout(services_config.get("timeout_seconds", 60.0)),
            )
        )

    async def close(self) -> None:
        await self.http_client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        error_message: str = "Request failed",
    ) -> Any:
        """
        Perform one service call and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the services base URL
            json: Request body; None-valued keys are dropped
            params: Query parameters; None-valued keys are dropped
            error_message: Fallback message when the service gives none

        Returns:
            Decoded JSON body (an empty dict for non-JSON bodies)

        Raises:
            ToolServiceError: Non-2xx status or an ``error`` field in the body
            httpx.HTTPError: Transport failure
        """
        if json is not None:
            json = {k: v for k, v in json.items() if v is not None}
        if params is not None:
            params = {k: v for k, v in params.items() if v is not None}

        if should_log_feature("clients", "http_requests"):
            logger.info("→ Service: %s %s", method, path)

        response = await self.http_client.request(method, path, json=json, params=params)

        try:
            data: Any = response.json()
        except ValueError:
            data = {}

        service_error = data.get("error") if isinstance(data, dict) else None
        if response.is_error or service_error:
            message = service_error or error_message
            details = data.get("details") if isinstance(data, dict) else None
            if details:
                message = f"{message}\nDetails: {details}"
            raise ToolServiceError(message, status_code=response.status_code)

        return data

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, **kwargs)
