"""Text ID generation (ULID format)."""

from ulid import ULID


def generate_booking_id() -> str:
    """Generate a booking ID, unique within its listing."""
    return str(ULID())


def generate_payment_request_id() -> str:
    """Generate an ID for a payment outbox entry."""
    return f"pay_{ULID()}"
