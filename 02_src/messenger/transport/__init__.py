"""Transport module."""

from .sessions import ITransport, SessionRegistry

__all__ = ["ITransport", "SessionRegistry"]
