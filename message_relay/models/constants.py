from typing import Dict, FrozenSet

PHONE_MESSAGE_TYPES = ("sms", "mms")

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"

STATUS_PENDING = "pending"
STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"
STATUS_RECEIVED = "received"

# Outbound delivery state machine. "received" is terminal and only set at creation.
STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    STATUS_PENDING: frozenset({STATUS_QUEUED, STATUS_PROCESSING}),
    STATUS_QUEUED: frozenset({STATUS_PROCESSING}),
    STATUS_PROCESSING: frozenset({STATUS_PROCESSING, STATUS_SENT, STATUS_FAILED}),
    STATUS_FAILED: frozenset({STATUS_QUEUED, STATUS_PROCESSING}),
    STATUS_SENT: frozenset({STATUS_DELIVERED, STATUS_FAILED}),
    STATUS_DELIVERED: frozenset(),
    STATUS_RECEIVED: frozenset(),
}

BODY_LIMITS = {"sms": 160, "mms": 1600, "email": 100_000}

CONVERSATION_DIRECT = "direct"
CONVERSATION_GROUP = "group"

MAX_ATTACHMENT_SIZE = 50 * 1024 * 1024


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in STATUS_TRANSITIONS.get(from_status, frozenset())
