"""Group membership module."""

from .gate import IMembershipGate, MembershipGate
from .groups import GroupManager

__all__ = ["IMembershipGate", "MembershipGate", "GroupManager"]
