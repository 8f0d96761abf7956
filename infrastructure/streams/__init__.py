"""Change data capture for the person table."""

from infrastructure.streams.change_stream import ChangeStream, StreamPosition

__all__ = ["ChangeStream", "StreamPosition"]
