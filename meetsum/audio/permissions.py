"""Microphone authorization checks."""

import logging
import platform
import webbrowser
from enum import Enum
from typing import Optional

import pyaudio

logger = logging.getLogger(__name__)

MACOS_MICROPHONE_SETTINGS = "x-apple.systempreferences:com.apple.preference.security?Privacy_Microphone"
MACOS_SECURITY_SETTINGS = "x-apple.systempreferences:com.apple.preference.security"
WINDOWS_MICROPHONE_SETTINGS = "ms-settings:privacy-microphone"


class AuthorizationStatus(Enum):
    AUTHORIZED = "authorized"
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    RESTRICTED = "restricted"


class MicrophoneAuthorizer:
    """Tri-state microphone authorization backed by PyAudio device discovery.

    Desktop platforms reachable from PyAudio have no interactive consent
    prompt, so the first request probes the default input device and the
    result is remembered: a device that can be opened is authorized, no
    input device at all is restricted, and a device that refuses to open is
    denied.
    """

    def __init__(self):
        self._status = AuthorizationStatus.NOT_DETERMINED

    def status(self) -> AuthorizationStatus:
        return self._status

    def request_access(self) -> bool:
        """Resolve a NOT_DETERMINED status. Blocking; run it off the event loop."""
        self._status = self._probe()
        logger.info(f"Microphone authorization resolved: {self._status.value}")
        return self._status is AuthorizationStatus.AUTHORIZED

    def _probe(self) -> AuthorizationStatus:
        audio = pyaudio.PyAudio()
        try:
            try:
                info = audio.get_default_input_device_info()
            except (IOError, OSError) as e:
                logger.warning(f"No default input device: {e}")
                return AuthorizationStatus.RESTRICTED
            try:
                stream = audio.open(format=pyaudio.paInt16, channels=1,
                                    rate=int(info.get("defaultSampleRate", 44100)),
                                    input=True, start=False)
                stream.close()
            except (IOError, OSError) as e:
                logger.warning(f"Input device refused to open: {e}")
                return AuthorizationStatus.DENIED
            return AuthorizationStatus.AUTHORIZED
        finally:
            audio.terminate()

    @staticmethod
    def privacy_settings_url() -> Optional[str]:
        system = platform.system()
        if system == "Darwin":
            return MACOS_MICROPHONE_SETTINGS
        if system == "Windows":
            return WINDOWS_MICROPHONE_SETTINGS
        return None

    def open_privacy_settings(self) -> bool:
        """Open the platform's microphone privacy settings, if it has any."""
        url = self.privacy_settings_url()
        if url is None:
            logger.info("No microphone privacy settings page on this platform")
            return False
        if webbrowser.open(url):
            return True
        if url == MACOS_MICROPHONE_SETTINGS:
            return webbrowser.open(MACOS_SECURITY_SETTINGS)
        return False
