"""User directory module."""

from .directory import IUserDirectory, UserDirectory, generate_handle, is_valid_handle

__all__ = ["IUserDirectory", "UserDirectory", "generate_handle", "is_valid_handle"]
