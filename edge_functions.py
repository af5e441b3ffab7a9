"""Thin HTTP client for the hosted edge functions."""

from __future__ import annotations

from typing import Any, Optional

import requests

from errors import AUTH_FAILED, VoiceChatError


class EdgeFunctionClient:
    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout_s: float = 10.0,
        session: Optional[requests.Session] = None,
        client_info: str = "truenorth-voice",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout_s = timeout_s
        self.client_info = client_info
        self._session = session or requests.Session()

    def url(self, function_name: str) -> str:
        if not self.base_url:
            raise VoiceChatError("Missing API base URL configuration", code=AUTH_FAILED)
        return f"{self.base_url}/functions/v1/{function_name}"

    def auth_headers(self) -> dict[str, str]:
        if not self.api_token:
            raise VoiceChatError("Authentication required to call this function", code=AUTH_FAILED)
        return {
            "Authorization": f"Bearer {self.api_token}",
            "X-Client-Info": self.client_info,
        }

    def post(
        self,
        function_name: str,
        *,
        json: Any = None,
        files: Any = None,
        headers: Optional[dict[str, str]] = None,
        stream: bool = False,
        timeout_s: Optional[float] = None,
    ) -> requests.Response:
        """POST to an edge function. Transport errors propagate as ``requests`` exceptions."""
        merged = self.auth_headers()
        if headers:
            merged.update(headers)
        return self._session.post(
            self.url(function_name),
            json=json,
            files=files,
            headers=merged,
            stream=stream,
            timeout=timeout_s if timeout_s is not None else self.timeout_s,
        )

    def close(self) -> None:
        self._session.close()


def error_detail(response: requests.Response) -> str:
    """Best-effort error text from a non-2xx response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"Function error ({response.status_code})"
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return f"Function error ({response.status_code})"
