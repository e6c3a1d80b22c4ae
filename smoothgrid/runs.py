"""
Voxel run codec.

Run format (1-4 bytes):
- Flag: uint8 (material index, store_occupancy, store_count)
- Solid occupancy: uint8, present only when store_occupancy is set,
  otherwise the voxel is fully solid (1.0)
- Count: uint8, present only when store_count is set.
  count > 0: the voxel repeats count + 1 times, no water
  count == 0: a single voxel followed by its water occupancy byte
- Water occupancy: uint8, present only in the count == 0 form

The count == 0 form carries the water channel without touching the flag
layout, so a voxel holding water can never be run-length compressed;
repeated watery voxels are written as repeated single-voxel records.
"""

from typing import Tuple

from smoothgrid.encoding import pack_flag, unpack_flag
from smoothgrid.errors import TruncatedInput
from smoothgrid.voxel import Voxel

MAX_RUN_LENGTH = 256  # count byte 0xFF

RunKey = Tuple[int, int, int]  # (material, solid byte, water byte)


def _byte(data: bytes, offset: int, field: str) -> int:
    if offset >= len(data):
        raise TruncatedInput(f"Unexpected end of input reading run {field}", offset)
    return data[offset]


def read_run(data: bytes, offset: int) -> Tuple[RunKey, int, int]:
    """
    Read one run starting at `offset`.

    Returns:
        Tuple of:
        - (material, solid_byte, water_byte) of the repeated voxel
        - repeat count (1-256)
        - offset of the byte following the run

    Raises:
        TruncatedInput: If the run is cut short by the end of input
    """
    material, store_occupancy, store_count = unpack_flag(_byte(data, offset, "flag"))
    offset += 1

    solid = 255
    if store_occupancy:
        solid = _byte(data, offset, "occupancy")
        offset += 1

    water = 0
    repeat = 1
    if store_count:
        count = _byte(data, offset, "count")
        offset += 1
        if count == 0:
            water = _byte(data, offset, "water occupancy")
            offset += 1
        else:
            repeat = count + 1

    return (material, solid, water), repeat, offset


def decode_run(data: bytes, offset: int = 0) -> Tuple[Voxel, int, int]:
    """
    Decode one run into (voxel, repeat_count, next_offset).
    """
    (material, solid, water), repeat, offset = read_run(data, offset)
    return Voxel.from_bytes(material, solid, water), repeat, offset


def run_length(data: bytes, offset: int) -> Tuple[int, int]:
    """
    Count the voxels in the run at `offset` without building it.

    Returns:
        (repeat_count, next_offset)
    """
    _material, store_occupancy, store_count = unpack_flag(_byte(data, offset, "flag"))
    offset += 1
    if store_occupancy:
        offset += 1
    if not store_count:
        return 1, offset

    count = _byte(data, offset, "count")
    offset += 1
    if count == 0:
        _byte(data, offset, "water occupancy")
        return 1, offset + 1
    return count + 1, offset


def encode_run_bytes(material: int, solid: int, water: int, repeat: int) -> bytes:
    """
    Encode `repeat` copies of an already-canonical voxel given as wire bytes.
    """
    if not 1 <= repeat <= MAX_RUN_LENGTH:
        raise ValueError(f"Run length must be 1-{MAX_RUN_LENGTH}, got {repeat}")

    store_occupancy = solid != 255
    out = bytearray([pack_flag(material, store_occupancy, repeat > 1 or water != 0)])
    if store_occupancy:
        out.append(solid)

    if water:
        out.append(0)
        out.append(water)
        return bytes(out) * repeat

    if repeat > 1:
        out.append(repeat - 1)
    return bytes(out)


def encode_run(voxel: Voxel, repeat: int = 1) -> bytes:
    """
    Encode `repeat` copies of `voxel` using the fewest bytes the format allows.

    The voxel is canonicalized first (see Voxel.canonical).
    """
    return encode_run_bytes(*voxel.canonical().key(), repeat)
