"""
Minimal store-and-forward relay for invoice message boxes.

Callers identify themselves with the X-Identity-Key header. The relay
never inspects bodies; they are opaque encrypted envelopes.
"""

from __future__ import annotations

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from .transport import MessageStore

logger = logging.getLogger(__name__)


class OutboundMessage(BaseModel):
    recipient: str = Field(min_length=1)
    message_box: str = Field(alias="messageBox", min_length=1)
    body: str


class SendMessageRequest(BaseModel):
    message: OutboundMessage


class ListMessagesRequest(BaseModel):
    message_box: str = Field(alias="messageBox", min_length=1)


class AcknowledgeRequest(BaseModel):
    message_ids: list[str] = Field(alias="messageIds")


def create_app(store: Optional[MessageStore] = None) -> FastAPI:
    store = store if store is not None else MessageStore()
    app = FastAPI(title="Invoicer relay")
    app.state.store = store

    def _caller(identity: Optional[str]) -> str:
        if not identity or not identity.strip():
            raise HTTPException(status_code=401, detail="Missing X-Identity-Key header")
        return identity.strip()

    @app.get("/")
    async def root():
        return {"status": "ok", "pending": len(store)}

    @app.post("/sendMessage")
    async def send_message(
        request: SendMessageRequest,
        x_identity_key: Optional[str] = Header(default=None),
    ):
        sender = _caller(x_identity_key)
        message_id = store.put(
            sender,
            request.message.recipient,
            request.message.message_box,
            request.message.body,
        )
        logger.info("Stored message %s for %s", message_id, request.message.recipient)
        return {"status": "success", "messageId": message_id}

    @app.post("/listMessages")
    async def list_messages(
        request: ListMessagesRequest,
        x_identity_key: Optional[str] = Header(default=None),
    ):
        recipient = _caller(x_identity_key)
        messages = store.list(recipient, request.message_box)
        return {"status": "success", "messages": [m.to_dict() for m in messages]}

    @app.post("/acknowledgeMessage")
    async def acknowledge_message(
        request: AcknowledgeRequest,
        x_identity_key: Optional[str] = Header(default=None),
    ):
        recipient = _caller(x_identity_key)
        removed = store.acknowledge(recipient, request.message_ids)
        return {"status": "success", "acknowledged": removed}

    return app


def serve(host: str = "127.0.0.1", port: int = 8787, log_level: str = "info") -> None:
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)
