"""Idempotency key handling utilities."""

import hashlib

IDEMPOTENCY_HEADER = "Idempotency-Key"


def generate_idempotency_key(method: str, path: str, client_key: str, actor: str = "") -> str:
    """Generate the cache key for a request carrying an Idempotency-Key header.

    Only the caller's key identifies a retry. Two requests with the same body
    but no shared key are separate operations: a merge sent again after an
    undo must run again.

    Args:
        method: HTTP method
        path: Request path
        client_key: Caller-supplied Idempotency-Key header
        actor: Caller identity (e.g. the Authorization header)

    Returns:
        Idempotency key string
    """
    key_string = "|".join([method, path, actor, client_key])
    return hashlib.sha256(key_string.encode()).hexdigest()
