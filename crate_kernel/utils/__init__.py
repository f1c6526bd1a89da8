"""Utility functions for the crate kernel."""

from crate_kernel.utils.hashing import canonicalize_json, hash_payload, hash_request
from crate_kernel.utils.idempotency import (
    generate_idempotency_key,
    parse_idempotency_key,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_request",
    "generate_idempotency_key",
    "parse_idempotency_key",
]
