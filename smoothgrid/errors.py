"""Errors raised while decoding a SmoothGrid blob."""


class DecodeError(ValueError):
    """Base class for malformed SmoothGrid data. Carries the failing byte offset."""

    def __init__(self, message: str, offset: int):
        super().__init__(f"{message} (at byte {offset})")
        self.offset = offset


class InvalidMagic(DecodeError):
    """First byte of the blob is not the format magic."""


class UnsupportedChunkSize(DecodeError):
    """Chunk size exponent outside the supported range."""


class TruncatedInput(DecodeError):
    """Input ended in the middle of a field, run or chunk."""


class TruncatedChunk(TruncatedInput):
    """Input ended before a chunk received all of its voxels."""


class VoxelBudgetExceeded(DecodeError):
    """A run would place more voxels than the chunk holds."""


class PositionOutOfRange(DecodeError):
    """Absolute chunk position lies outside the addressable world."""
