"""Delivery telemetry.

Each delivery event is recorded as an OpenTelemetry span event on the current
span, carrying the event's measurements and metadata as attributes. The same
events feed Prometheus counters and a delivery duration histogram.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Sequence

from opentelemetry import trace
from opentelemetry.trace import Span
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("message_relay.delivery")

STATUS_TRANSITION = "message_delivery.status_transition"
DELIVERY_COMPLETED = "message_delivery.completed"
BATCH_ENQUEUED = "message_delivery.batch_enqueued"

# =============================================================================
# Metric Definitions
# =============================================================================

status_transitions_total = Counter(
    "message_relay_status_transitions_total",
    "Message status transitions",
    labelnames=["message_type", "from_status", "to_status"],
)

deliveries_total = Counter(
    "message_relay_deliveries_total",
    "Completed delivery attempts",
    labelnames=["message_type", "result"],
)

delivery_duration_seconds = Histogram(
    "message_relay_delivery_duration_seconds",
    "Time from queueing to delivery outcome in seconds",
    labelnames=["message_type", "result"],
)

batch_enqueued_total = Counter(
    "message_relay_batch_enqueued_messages_total",
    "Messages queued through batch enqueueing",
)


def attribute_value(value: Any) -> Any:
    """Coerce a measurement or metadata value into an OpenTelemetry attribute."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Sequence):
        return [str(item) for item in value]
    return str(value)


def event_attributes(
    measurements: Mapping[str, Any], metadata: Mapping[str, Any]
) -> Dict[str, Any]:
    attributes: Dict[str, Any] = {}
    for source in (measurements, metadata):
        for key, value in source.items():
            if value is not None:
                attributes[key] = attribute_value(value)
    return attributes


def record_event(
    event: str,
    measurements: Mapping[str, Any],
    metadata: Mapping[str, Any],
    span: Optional[Span] = None,
) -> None:
    """Add ``event`` to ``span``, or to the current span when none is given."""
    span = span or trace.get_current_span()
    span.add_event(event, attributes=event_attributes(measurements, metadata))
    logger.debug("%s %s %s", event, dict(measurements), dict(metadata))


def record_status_transition(measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
    record_event(STATUS_TRANSITION, measurements, metadata)
    status_transitions_total.labels(
        message_type=metadata["message_type"],
        from_status=metadata["from_status"],
        to_status=metadata["to_status"],
    ).inc()


def record_delivery_completed(
    measurements: Mapping[str, Any], metadata: Mapping[str, Any]
) -> None:
    record_event(DELIVERY_COMPLETED, measurements, metadata)
    labels = {"message_type": metadata["message_type"], "result": metadata["result"]}
    deliveries_total.labels(**labels).inc()
    delivery_duration_seconds.labels(**labels).observe(measurements["duration_ms"] / 1000.0)


def record_batch_enqueued(measurements: Mapping[str, Any], metadata: Mapping[str, Any]) -> None:
    record_event(BATCH_ENQUEUED, measurements, metadata)
    batch_enqueued_total.inc(measurements["count"])
