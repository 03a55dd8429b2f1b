"""Idempotency scope keys and payload digests."""

from typing import Any

from swapgraph.core.canonical import canonical_hash
from swapgraph.core.models import Actor


def scope_key(actor: Actor, operation: str, idempotency_key: str) -> str:
    """Keys are scoped per (actor, operation); the same key under another actor is unrelated."""
    return f"{actor.key}|{operation}|{idempotency_key}"


def payload_hash(payload: Any) -> str:
    return canonical_hash(payload if payload is not None else {})
