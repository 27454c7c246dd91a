"""Presence module."""

from .tracker import IPresenceTracker, PresenceTracker, can_see_presence

__all__ = ["IPresenceTracker", "PresenceTracker", "can_see_presence"]
