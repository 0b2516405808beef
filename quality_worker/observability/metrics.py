"""Per-message processing metrics.

Provides the MessageMetrics dataclass and log_message_metrics() for emitting
one structured JSON line per settled message. Cloud Logging picks these up
as log-based metrics.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class MessageMetrics:
    """Everything recorded about one settled queue message."""

    message_id: str
    file_name: str
    disposition: str
    processing_wall_time_seconds: float
    attempt: int = 1
    consensus_score: float | None = None
    consensus_source: str | None = None
    secondary_available: bool | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)
    error_stage: str | None = None
    error_message: str | None = None


def log_message_metrics(metrics: MessageMetrics) -> None:
    """Emit message metrics as a single structured JSON line to stdout.

    The JSON envelope includes timestamp, severity, and metric_type
    fields for GCP Cloud Logging structured log parsing. All
    MessageMetrics fields are spread into the top level.

    Args:
        metrics: Populated MessageMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "message_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry, ensure_ascii=False))
