"""Console view of the session state broadcast."""

import logging
from typing import Optional

from pubsub import pub
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ..audio.permissions import MicrophoneAuthorizer
from ..models.session import SessionState, SessionStatus
from ..services.status_publisher import PERMISSION_DENIED_TOPIC, STATE_TOPIC

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    SessionStatus.IDLE: ("Idle", "dim"),
    SessionStatus.RECORDING: ("🎤 Recording", "red"),
    SessionStatus.PREPARING_PLAYBACK: ("Preparing recording", "yellow"),
    SessionStatus.TRANSCRIBING: ("📝 Transcribing", "blue"),
    SessionStatus.RELAYING: ("📨 Requesting summary", "blue"),
    SessionStatus.COMPLETE: ("✅ Complete", "green"),
    SessionStatus.FAILED: ("❌ Failed", "bold red"),
}


class StatusScreen:
    """Prints a line for every status change and the final outcome."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.last_state: Optional[SessionState] = None
        self._subscribed = False

    def attach(self) -> None:
        """Subscribe to the state and permission topics."""
        if self._subscribed:
            return
        pub.subscribe(self.on_state, STATE_TOPIC)
        pub.subscribe(self.on_permission_denied, PERMISSION_DENIED_TOPIC)
        self._subscribed = True
        logger.debug("StatusScreen attached")

    def detach(self) -> None:
        if not self._subscribed:
            return
        pub.unsubscribe(self.on_state, STATE_TOPIC)
        pub.unsubscribe(self.on_permission_denied, PERMISSION_DENIED_TOPIC)
        self._subscribed = False

    def on_state(self, state: SessionState) -> None:
        previous = self.last_state
        self.last_state = state
        if previous is not None and previous.status is state.status:
            return

        label, style = STATUS_LABELS[state.status]
        if state.status is SessionStatus.COMPLETE:
            self.console.print(Panel(Text(state.result_url or "", style="bold"),
                                     title=label, border_style=style))
        elif state.status is SessionStatus.FAILED:
            self.console.print(Panel(Text(state.error_message or "unknown error"),
                                     title=label, border_style=style))
        else:
            self.console.print(label, style=style)

        if state.has_recording and state.duration:
            self.console.print(f"   recording length: {state.duration:.1f}s", style="dim")

    def on_permission_denied(self, status: str) -> None:
        url = MicrophoneAuthorizer.privacy_settings_url()
        self.console.print(f"Microphone access {status}.", style="yellow")
        if url:
            self.console.print(f"   Open {url} to allow it.", style="yellow")
