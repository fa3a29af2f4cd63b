"""
Interface contracts for the collaborators the pipeline depends on.

The stream loop and dispatcher only ever see these protocols, so tests and
dry runs can swap the aiohttp implementations for in-memory fakes.
"""

from __future__ import annotations

from typing import Optional, Protocol, Union, runtime_checkable

from .moderation.models import BlockAction

Frame = Union[str, bytes]


@runtime_checkable
class StreamTransport(Protocol):
    """Duplex stream connection delivering one frame at a time."""

    async def connect(self) -> None:
        """Open the connection. Raises ``TransportError`` on failure."""
        ...

    async def receive(self) -> Optional[Frame]:
        """Next frame, or ``None`` once the peer has closed the stream."""
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


@runtime_checkable
class ListItemWriter(Protocol):
    """The single moderation API operation the dispatcher needs."""

    async def create_list_item(self, action: BlockAction) -> str:
        """Write one list-item record; returns its URI. Raises ``ActionError``."""
        ...


def validate_list_writer(writer: object) -> ListItemWriter:
    if not isinstance(writer, ListItemWriter):
        raise TypeError(f"{writer!r} does not implement ListItemWriter")
    return writer


def validate_transport(transport: object) -> StreamTransport:
    if not isinstance(transport, StreamTransport):
        raise TypeError(f"{transport!r} does not implement StreamTransport")
    return transport
