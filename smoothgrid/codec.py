"""
SmoothGrid blob and chunk codec.

Blob format:
- Magic: uint8, always 0x01
- Chunk size exponent: uint8, 0-8 (chunk_size = 2 ** exponent, usually 5)
- Payload: chunks back to back until the end of input

Chunk format:
- Position delta: 12 bytes (see smoothgrid.encoding), relative to the
  previous chunk's absolute position, or (0, 0, 0) for the first chunk
- Runs (see smoothgrid.runs) until chunk_size^3 voxels are produced

Chunks carry no length prefix, so a chunk's end is only known by counting
voxels. index_chunks does that counting pass alone, which lets decode
expand chunk bodies concurrently once every offset is known.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from smoothgrid.encoding import DELTA_SIZE, decode_delta, encode_delta
from smoothgrid.errors import (
    InvalidMagic,
    PositionOutOfRange,
    TruncatedChunk,
    TruncatedInput,
    UnsupportedChunkSize,
    VoxelBudgetExceeded,
)
from smoothgrid.runs import MAX_RUN_LENGTH, encode_run_bytes, read_run, run_length
from smoothgrid.voxel import (
    CHUNK_POSITION_LIMIT,
    DEFAULT_CHUNK_SIZE_LOG2,
    MAX_CHUNK_SIZE_LOG2,
    Blob,
    Chunk,
    ChunkPosition,
    canonical_channels,
    validate_position,
)

logger = logging.getLogger(__name__)

# Constants
MAGIC = 0x01
HEADER_SIZE = 2
ORIGIN: ChunkPosition = (0, 0, 0)


@dataclass(frozen=True)
class ChunkIndexEntry:
    """Where a chunk lives in the blob and where it sits in the world."""
    offset: int
    body_offset: int
    end: int
    position: ChunkPosition


def read_header(data: bytes) -> int:
    """
    Validate the blob header.

    Returns:
        The chunk size exponent
    """
    if len(data) < 1:
        raise TruncatedInput("Unexpected end of input reading magic", 0)
    if data[0] != MAGIC:
        raise InvalidMagic(f"Invalid magic: 0x{data[0]:02X}, expected 0x{MAGIC:02X}", 0)
    if len(data) < HEADER_SIZE:
        raise TruncatedInput("Unexpected end of input reading chunk size", 1)

    chunk_size_log2 = data[1]
    if chunk_size_log2 > MAX_CHUNK_SIZE_LOG2:
        raise UnsupportedChunkSize(
            f"Unsupported chunk size exponent: {chunk_size_log2}, "
            f"expected 0-{MAX_CHUNK_SIZE_LOG2}",
            1,
        )
    return chunk_size_log2


def _read_position(
    data: bytes,
    offset: int,
    previous: ChunkPosition,
) -> Tuple[ChunkPosition, int]:
    end = offset + DELTA_SIZE
    if end > len(data):
        raise TruncatedChunk(
            f"Unexpected end of input reading chunk position "
            f"({len(data) - offset} of {DELTA_SIZE} bytes)",
            len(data),
        )

    dx, dy, dz = decode_delta(data[offset:end])
    position = (previous[0] + dx, previous[1] + dy, previous[2] + dz)
    if any(abs(c) > CHUNK_POSITION_LIMIT for c in position):
        raise PositionOutOfRange(
            f"Chunk position {position} exceeds +/-{CHUNK_POSITION_LIMIT}",
            offset,
        )
    return position, end


def _ran_out(filled: int, count: int, offset: int) -> TruncatedChunk:
    return TruncatedChunk(
        f"Unexpected end of input: chunk has {filled} of {count} voxels",
        offset,
    )


def _overflow(repeat: int, filled: int, count: int, offset: int) -> VoxelBudgetExceeded:
    return VoxelBudgetExceeded(
        f"Run of {repeat} voxels overflows chunk at voxel {filled} of {count}",
        offset,
    )


def _decode_body(
    data: bytes,
    offset: int,
    chunk_size_log2: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, int]:
    count = 1 << (3 * chunk_size_log2)
    materials = np.empty(count, dtype=np.uint8)
    solid = np.empty(count, dtype=np.uint8)
    water = np.empty(count, dtype=np.uint8)

    filled = 0
    while filled < count:
        if offset >= len(data):
            raise _ran_out(filled, count, offset)

        run_offset = offset
        (material, occupancy, water_occupancy), repeat, offset = read_run(data, offset)
        end = filled + repeat
        if end > count:
            raise _overflow(repeat, filled, count, run_offset)

        materials[filled:end] = material
        solid[filled:end] = occupancy
        water[filled:end] = water_occupancy
        filled = end

    return materials, solid, water, offset


def _skip_body(data: bytes, offset: int, chunk_size_log2: int) -> int:
    count = 1 << (3 * chunk_size_log2)
    filled = 0
    while filled < count:
        if offset >= len(data):
            raise _ran_out(filled, count, offset)

        run_offset = offset
        repeat, offset = run_length(data, offset)
        if filled + repeat > count:
            raise _overflow(repeat, filled, count, run_offset)
        filled += repeat
    return offset


def decode_chunk(
    data: bytes,
    offset: int,
    previous: ChunkPosition = ORIGIN,
    chunk_size_log2: int = DEFAULT_CHUNK_SIZE_LOG2,
) -> Tuple[Chunk, int]:
    """
    Decode the chunk starting at `offset`.

    Args:
        data: Whole blob (or any buffer holding the chunk)
        offset: Byte offset of the chunk's position delta
        previous: Absolute position of the preceding chunk
        chunk_size_log2: Chunk size exponent from the blob header

    Returns:
        Tuple of (chunk, offset of the byte after the chunk)
    """
    position, body_offset = _read_position(data, offset, previous)
    materials, solid, water, end = _decode_body(data, body_offset, chunk_size_log2)
    chunk = Chunk(
        position=position,
        materials=materials,
        solid=solid,
        water=water,
        chunk_size_log2=chunk_size_log2,
    )
    return chunk, end


def _encode_body(chunk: Chunk) -> bytes:
    """Encode a chunk's voxels as the shortest run sequence."""
    materials, solid, water = canonical_channels(chunk.materials, chunk.solid, chunk.water)
    keys = (
        (materials.astype(np.uint32) << 16)
        | (solid.astype(np.uint32) << 8)
        | water.astype(np.uint32)
    )

    starts = np.concatenate(([0], np.flatnonzero(np.diff(keys)) + 1))
    ends = np.append(starts[1:], len(keys))

    out = bytearray()
    for start, end in zip(starts.tolist(), ends.tolist()):
        voxel = (int(materials[start]), int(solid[start]), int(water[start]))
        remaining = end - start
        # Split long runs (count byte maxes out at 256 voxels)
        while remaining > 0:
            length = min(remaining, MAX_RUN_LENGTH)
            out += encode_run_bytes(*voxel, length)
            remaining -= length
    return bytes(out)


def encode_chunk(chunk: Chunk, previous: ChunkPosition = ORIGIN) -> bytes:
    """
    Encode one chunk: its position delta from `previous`, then its runs.
    """
    position = validate_position(chunk.position)
    delta = tuple(p - q for p, q in zip(position, previous))
    return encode_delta(delta) + _encode_body(chunk)


def _index(data: bytes, chunk_size_log2: int) -> List[ChunkIndexEntry]:
    entries = []
    offset = HEADER_SIZE
    position = ORIGIN
    while offset < len(data):
        position, body_offset = _read_position(data, offset, position)
        end = _skip_body(data, body_offset, chunk_size_log2)
        entries.append(ChunkIndexEntry(offset, body_offset, end, position))
        offset = end
    return entries


def index_chunks(data: bytes) -> List[ChunkIndexEntry]:
    """
    Locate every chunk in a blob without expanding voxels.

    Raises the same errors as decode for structural problems.
    """
    return _index(data, read_header(data))


def decode(data: bytes, max_workers: Optional[int] = None) -> Blob:
    """
    Decode a SmoothGrid blob.

    Args:
        data: Raw blob bytes
        max_workers: When greater than 1, chunk bodies are expanded on a
                     thread pool after a sequential index pass

    Returns:
        The decoded Blob

    Raises:
        DecodeError: If the data is malformed (see smoothgrid.errors)

    Example:
        >>> blob = decode(raw)
        >>> blob.chunks[0].get_voxel((0, 0, 0))
        Voxel(material=<Material.AIR: 0>, solid_occupancy=1.0, water_occupancy=0.0)
    """
    data = bytes(data)
    chunk_size_log2 = read_header(data)
    logger.debug("Decoding %d bytes, chunk size 2^%d", len(data), chunk_size_log2)

    if max_workers is not None and max_workers > 1:
        entries = _index(data, chunk_size_log2)

        def expand(entry: ChunkIndexEntry) -> Chunk:
            materials, solid, water, _end = _decode_body(
                data, entry.body_offset, chunk_size_log2
            )
            return Chunk(entry.position, materials, solid, water, chunk_size_log2)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            chunks = list(executor.map(expand, entries))
    else:
        chunks = []
        offset = HEADER_SIZE
        position = ORIGIN
        while offset < len(data):
            chunk, offset = decode_chunk(data, offset, position, chunk_size_log2)
            position = chunk.position
            chunks.append(chunk)
            logger.debug("Decoded chunk at %s, next offset %d", position, offset)

    logger.debug("Decoded %d chunks", len(chunks))
    return Blob(chunk_size_log2=chunk_size_log2, chunks=chunks)


def encode(blob: Blob, max_workers: Optional[int] = None) -> bytes:
    """
    Encode a Blob into SmoothGrid bytes.

    Chunks are written in blob order; voxels are canonicalized on the way
    out (see Voxel.canonical).

    Args:
        blob: Blob to encode
        max_workers: When greater than 1, chunk run streams are encoded
                     on a thread pool

    Raises:
        ValueError: If a chunk's size differs from the blob's or a
                    position is out of range
    """
    for chunk in blob.chunks:
        if chunk.chunk_size_log2 != blob.chunk_size_log2:
            raise ValueError(
                f"Chunk at {chunk.position} has size exponent "
                f"{chunk.chunk_size_log2}, blob has {blob.chunk_size_log2}"
            )
        validate_position(chunk.position)

    if max_workers is not None and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            bodies = list(executor.map(_encode_body, blob.chunks))
    else:
        bodies = [_encode_body(chunk) for chunk in blob.chunks]

    out = bytearray([MAGIC, blob.chunk_size_log2])
    previous = ORIGIN
    for chunk, body in zip(blob.chunks, bodies):
        delta = tuple(p - q for p, q in zip(chunk.position, previous))
        out += encode_delta(delta)
        out += body
        previous = chunk.position

    logger.debug("Encoded %d chunks into %d bytes", len(blob.chunks), len(out))
    return bytes(out)
