from __future__ import annotations


class ParleyError(Exception):
    """Base class for realtime conversation failures."""


class BootstrapError(ParleyError):
    """Credential or session configuration could not be obtained; no channel was opened."""


class ChannelError(ParleyError):
    """The duplex channel failed to open or a send failed at the transport level."""


class NotConnectedError(ParleyError):
    """An outbound envelope was sent while no channel is open."""


class MalformedEventError(ParleyError, ValueError):
    """An inbound envelope is not a JSON object with a string ``type``."""


class CaptureUnavailableError(ParleyError):
    """The capture device is missing or access was denied."""


__all__ = [
    "BootstrapError",
    "CaptureUnavailableError",
    "ChannelError",
    "MalformedEventError",
    "NotConnectedError",
    "ParleyError",
]
