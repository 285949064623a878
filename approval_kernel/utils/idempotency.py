"""
Idempotency key generation utilities.

Completion of a workflow instance must produce exactly one downstream
record, even when the completion handler is retried after a failure or
invoked concurrently by a decision and the sweeper.
"""

from uuid import UUID


def generate_idempotency_key(
    workflow_type: str,
    record_type: str,
    instance_id: UUID | str,
) -> str:
    """
    Generate the idempotency key for a completion side effect.

    Format: workflow_type:record_type:instance_id

    The key is stored on the ExecutionRecord and has a unique constraint.

    Example:
        >>> generate_idempotency_key("maintenance", "maintenance_job", uuid)
        "maintenance:maintenance_job:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{workflow_type}:{record_type}:{instance_id}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse an idempotency key into (workflow_type, record_type, instance_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
