"""Message Store module."""

from .store import IMessageStore, MessageStore, Payload, utcnow, validate_payload

__all__ = ["IMessageStore", "MessageStore", "Payload", "utcnow", "validate_payload"]
