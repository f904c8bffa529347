"""Persistent storage for bindings, admin settings and API keys."""

from l2h.storage.store import (
    API_KEY_LENGTH,
    AdminSettings,
    APIKey,
    Binding,
    BindingStore,
    ServerLink,
)

__all__ = [
    "API_KEY_LENGTH",
    "AdminSettings",
    "APIKey",
    "Binding",
    "BindingStore",
    "ServerLink",
]
