"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


KEY_FILE = Path(".invoicer-secrets") / "identity.key"
DEFAULT_MESSAGE_BOX_URL = "http://127.0.0.1:8787"


def default_key_path() -> Path:
    """Identity key location under the current user's home directory."""
    return Path.home() / KEY_FILE


@dataclass
class InvoicerConfig:
    key_path: Path = field(default_factory=default_key_path)
    identity_key: Optional[str] = None
    message_box_url: str = DEFAULT_MESSAGE_BOX_URL
    payment_url: Optional[str] = None
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> InvoicerConfig:
        key_path = os.getenv("INVOICER_KEY_PATH")
        timeout = os.getenv("INVOICER_TIMEOUT")
        try:
            timeout_seconds = float(timeout) if timeout else 30.0
        except ValueError:
            raise ValueError(f"INVOICER_TIMEOUT must be a number of seconds, got {timeout!r}")
        return cls(
            key_path=Path(key_path) if key_path else default_key_path(),
            identity_key=os.getenv("INVOICER_IDENTITY_KEY") or None,
            message_box_url=os.getenv("INVOICER_MESSAGE_BOX_URL") or DEFAULT_MESSAGE_BOX_URL,
            payment_url=os.getenv("INVOICER_PAYMENT_URL") or None,
            timeout_seconds=timeout_seconds,
        )
