"""Services layer for Meetsum application logic."""

from .pipeline_controller import PipelineController
from .status_publisher import StatusPublisher, STATE_TOPIC, PERMISSION_DENIED_TOPIC

__all__ = [
    "PipelineController",
    "StatusPublisher",
    "STATE_TOPIC",
    "PERMISSION_DENIED_TOPIC",
]
