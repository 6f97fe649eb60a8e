"""Exception types raised by the transport and the record codec."""

from __future__ import annotations


class TransportError(ConnectionError):
    """The USB link failed to open, read or write."""


class DeviceRemovedError(TransportError):
    """The device disappeared from the bus while connected."""


class MalformedBulkTransferError(ValueError):
    """A bulk program transfer could not be decoded.

    Attributes:
        offset: Byte offset at which decoding stopped.
    """

    def __init__(self, message: str, offset: int = 0) -> None:
        super().__init__(message)
        self.offset = offset
