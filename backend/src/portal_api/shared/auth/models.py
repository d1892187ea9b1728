"""Authentication models shared across API projects."""

from dataclasses import dataclass


@dataclass
class User:
    """Authenticated caller, as established by the upstream auth layer."""
    user_id: str
    email: str = ""
    name: str = ""
