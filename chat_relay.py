"""Relay a finished transcript to the streaming chat function."""

from __future__ import annotations

import json
from typing import Callable, Optional

import requests

from edge_functions import EdgeFunctionClient, error_detail
from errors import ChatRelayError, VoiceChatError
from logging_setup import get_logger
from models import ChatReply

log = get_logger(__name__)


class ChatRelay:
    def __init__(
        self,
        client: EdgeFunctionClient,
        function_name: str = "chat-stream",
        timeout_s: float = 60.0,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._client = client
        self._function_name = function_name
        self._timeout_s = timeout_s
        self._on_delta = on_delta
        self.thread_id: Optional[str] = None

    def send(self, message: str) -> ChatReply:
        if not message.strip():
            raise ValueError("message must not be empty")
        try:
            response = self._client.post(
                self._function_name,
                json={"message": message, "threadId": self.thread_id},
                headers={"Content-Type": "application/json", "Cache-Control": "no-cache"},
                stream=True,
                timeout_s=self._timeout_s,
            )
        except requests.RequestException as exc:
            raise ChatRelayError(f"Failed to reach assistant: {exc}", retryable=True) from exc
        except VoiceChatError as exc:
            raise ChatRelayError(exc.message, code=exc.code) from exc

        try:
            if response.status_code >= 400:
                raise ChatRelayError(
                    f"Failed to get response from assistant: {response.status_code} {error_detail(response)}"
                )
            content = self._read_stream(response)
        finally:
            response.close()

        if not content:
            raise ChatRelayError("Assistant returned an empty reply")
        log.info("chat.reply", chars=len(content), thread_id=self.thread_id)
        return ChatReply(content=content, thread_id=self.thread_id)

    def _read_stream(self, response: requests.Response) -> str:
        content = ""
        try:
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data: "):
                    continue
                try:
                    data = json.loads(line[len("data: "):])
                except ValueError:
                    log.warning("chat.bad_event", line=line[:80])
                    continue
                if data.get("error"):
                    raise ChatRelayError(str(data["error"]))
                if data.get("threadId") and not self.thread_id:
                    self.thread_id = str(data["threadId"])
                if data.get("content"):
                    content = str(data["content"])
                    if self._on_delta:
                        self._on_delta(content)
                if data.get("done"):
                    break
        except requests.RequestException as exc:
            raise ChatRelayError(f"Assistant stream interrupted: {exc}", retryable=True) from exc
        return content
