"""
Store-and-forward message boxes.

A message box is a per-recipient, per-name queue of opaque text bodies.
Messages stay listed until the recipient acknowledges them.

LocalMessageBox talks to an in-process MessageStore; HttpMessageBox talks
to a relay server (see invoicer.relay) over HTTP.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

import httpx

from .errors import TransportError

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "X-Identity-Key"


@dataclass(frozen=True)
class PeerMessage:
    """A pending message as listed by the transport."""

    message_id: str
    sender: str
    body: str

    def to_dict(self) -> dict:
        return {"messageId": self.message_id, "sender": self.sender, "body": self.body}


@dataclass(frozen=True)
class SendReceipt:
    message_id: str
    recipient: str
    message_box: str


class MessageTransport(Protocol):
    async def send_message(self, message_box: str, recipient: str, body: str) -> SendReceipt: ...

    async def list_messages(self, message_box: str) -> list[PeerMessage]: ...

    async def acknowledge(self, message_ids: Iterable[str]) -> None: ...


@dataclass
class _StoredMessage:
    recipient: str
    message_box: str
    message: PeerMessage


class MessageStore:
    """In-memory message boxes shared by every identity using them."""

    def __init__(self):
        self._messages: dict[str, _StoredMessage] = {}
        self._lock = threading.Lock()

    def put(self, sender: str, recipient: str, message_box: str, body: str) -> str:
        message_id = secrets.token_hex(16)
        with self._lock:
            self._messages[message_id] = _StoredMessage(
                recipient=recipient,
                message_box=message_box,
                message=PeerMessage(message_id=message_id, sender=sender, body=body),
            )
        return message_id

    def list(self, recipient: str, message_box: str) -> list[PeerMessage]:
        with self._lock:
            return [
                stored.message
                for stored in self._messages.values()
                if stored.recipient == recipient and stored.message_box == message_box
            ]

    def acknowledge(self, recipient: str, message_ids: Iterable[str]) -> int:
        """Remove the recipient's messages; unknown IDs are ignored."""
        removed = 0
        with self._lock:
            for message_id in message_ids:
                stored = self._messages.get(message_id)
                if stored is not None and stored.recipient == recipient:
                    del self._messages[message_id]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._messages)


class LocalMessageBox:
    """MessageTransport over an in-process MessageStore."""

    def __init__(self, store: MessageStore, identity: str):
        self.store = store
        self.identity = identity

    async def send_message(self, message_box: str, recipient: str, body: str) -> SendReceipt:
        message_id = self.store.put(self.identity, recipient, message_box, body)
        return SendReceipt(message_id=message_id, recipient=recipient, message_box=message_box)

    async def list_messages(self, message_box: str) -> list[PeerMessage]:
        return self.store.list(self.identity, message_box)

    async def acknowledge(self, message_ids: Iterable[str]) -> None:
        self.store.acknowledge(self.identity, list(message_ids))


class HttpMessageBox:
    """MessageTransport backed by a relay server."""

    def __init__(
        self,
        base_url: str,
        identity: str,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_seconds)

    async def send_message(self, message_box: str, recipient: str, body: str) -> SendReceipt:
        data = await self._post(
            "/sendMessage",
            {"message": {"recipient": recipient, "messageBox": message_box, "body": body}},
        )
        message_id = data.get("messageId")
        if not message_id:
            raise TransportError("Relay did not return a message ID")
        logger.debug("Sent message %s to %s/%s", message_id, recipient, message_box)
        return SendReceipt(message_id=str(message_id), recipient=recipient, message_box=message_box)

    async def list_messages(self, message_box: str) -> list[PeerMessage]:
        data = await self._post("/listMessages", {"messageBox": message_box})
        try:
            return [
                PeerMessage(
                    message_id=str(m["messageId"]),
                    sender=str(m["sender"]),
                    body=str(m["body"]),
                )
                for m in data.get("messages", [])
            ]
        except (KeyError, TypeError) as e:
            raise TransportError(f"Malformed message listing: {e}") from e

    async def acknowledge(self, message_ids: Iterable[str]) -> None:
        await self._post("/acknowledgeMessage", {"messageIds": list(message_ids)})

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                path, json=payload, headers={IDENTITY_HEADER: self.identity}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Relay returned %s for %s", e.response.status_code, path)
            raise TransportError(
                f"Relay rejected {path} ({e.response.status_code}): {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"Unable to reach relay at {self.base_url}: {e}") from e
        except ValueError as e:
            raise TransportError(f"Relay returned invalid JSON for {path}") from e

        if not isinstance(data, dict) or data.get("status") != "success":
            description = data.get("description") if isinstance(data, dict) else None
            raise TransportError(f"Relay error on {path}: {description or data!r}")
        return data

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()
