"""Status publisher module for pub/sub state broadcast."""

import logging
from pubsub import pub

from ..audio.permissions import AuthorizationStatus
from ..models.session import SessionState

logger = logging.getLogger(__name__)

STATE_TOPIC = "session.state"
PERMISSION_DENIED_TOPIC = "microphone.permission_denied"


class StatusPublisher:
    """Broadcasts session state snapshots using pubsub.pub."""

    def __init__(self, topic: str = STATE_TOPIC, permission_topic: str = PERMISSION_DENIED_TOPIC):
        """Initialize status publisher.

        Args:
            topic: Pub/sub topic for SessionState snapshots
            permission_topic: Pub/sub topic for microphone permission denials
        """
        self.topic = topic
        self.permission_topic = permission_topic
        logger.info(f"StatusPublisher initialized with topic: {topic}")

    def publish_state(self, state: SessionState) -> None:
        """Publish a state snapshot to the pub/sub topic."""
        pub.sendMessage(self.topic, state=state)

    def publish_permission_denied(self, status: AuthorizationStatus) -> None:
        """Tell listeners to offer the privacy-settings shortcut."""
        pub.sendMessage(self.permission_topic, status=status.value)
        logger.debug(f"Published permission denial: {status.value}")
