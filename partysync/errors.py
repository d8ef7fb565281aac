"""
Exceptions raised inside the sync engine.

None of these escape to the host: the transport and engine catch them and
degrade to a status flag.
"""


class PartySyncError(Exception):
    pass


class MalformedFrameError(PartySyncError):
    """An inbound frame could not be decoded or has no usable `type`."""

    def __init__(self, reason: str, raw=None):
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class TransportError(PartySyncError):
    """A connection attempt or an established connection failed."""
