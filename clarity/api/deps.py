from __future__ import annotations

from clarity.config import settings


def resolve_credential(client_key: str | None) -> str:
    """Pick the bearer credential for the completions backend.

    A non-empty key supplied by the client wins; otherwise the configured
    server default is used.
    """
    if client_key and client_key.strip():
        return client_key.strip()
    return settings.completions_bearer
