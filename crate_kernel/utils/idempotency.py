"""
Idempotency key generation utilities.

A client that may retry a mutating call (after a timeout, say) passes the
same client key each time.  The stored key is namespaced by operation so the
same client key can be used for, e.g., a departure and a payment without
colliding.
"""


def generate_idempotency_key(operation: str, client_key: str) -> str:
    """
    Build the stored idempotency key.

    Format: operation:client_key

    Example:
        >>> generate_idempotency_key("register_payment", "pay-7f3a")
        'register_payment:pay-7f3a'
    """
    if not operation or ":" in operation:
        raise ValueError(f"Invalid operation name for idempotency key: {operation!r}")
    if not client_key or not str(client_key).strip():
        raise ValueError("Idempotency client key must not be empty")
    return f"{operation}:{client_key}"


def parse_idempotency_key(key: str) -> tuple[str, str]:
    """
    Split a stored key into (operation, client_key).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1]
