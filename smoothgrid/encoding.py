"""
Low-level field codecs for the SmoothGrid terrain format.

Three small codecs live here:

- f8: an unsigned 8-bit fraction in [0, 1] with step 1/255
- Flag byte: material index (bits 0-5), store_occupancy (bit 6),
  store_count (bit 7)
- Position delta: a signedness vector followed by three magnitude
  vectors weighted x65536, x256 and x1, one byte per axis each

Delta layout (12 bytes):
- Signedness: 3 bytes, 0xFF marks a negative axis
- Magnitude x65536: 3 bytes
- Magnitude x256: 3 bytes
- Magnitude x1: 3 bytes

A negative axis whose magnitude fits in the x1 byte is written in the
sign-padded short form: both upper magnitude bytes carry 0xFF, so a delta
of -1 reads FF | FF | FF | 01.
"""

import math
from typing import Tuple

# Flag byte layout
MATERIAL_BITS = 6
MATERIAL_MASK = (1 << MATERIAL_BITS) - 1  # 0x3F
STORE_OCCUPANCY_BIT = 1 << 6
STORE_COUNT_BIT = 1 << 7

# Position delta layout
NEGATIVE = 0xFF
POSITIVE = 0x00
AXES = 3
DELTA_SIZE = 4 * AXES  # 12 bytes
DELTA_WEIGHTS = (65536, 256, 1)
MAX_DELTA_MAGNITUDE = 0xFFFF00  # 16,776,960


def decode_f8(value: int) -> float:
    """Convert a quantized byte (0-255) to a fraction in [0, 1]."""
    return value / 255.0


def encode_f8(fraction: float) -> int:
    """
    Convert a fraction to its quantized byte.

    Values are clamped to [0, 1] and rounded half-up, so
    encode_f8(decode_f8(v)) == v for every byte v.
    """
    if math.isnan(fraction):
        return 0
    clamped = min(max(fraction, 0.0), 1.0)
    return int(math.floor(clamped * 255.0 + 0.5))


def unpack_flag(flag: int) -> Tuple[int, bool, bool]:
    """
    Split a flag byte into (material_index, store_occupancy, store_count).
    """
    return (
        flag & MATERIAL_MASK,
        bool(flag & STORE_OCCUPANCY_BIT),
        bool(flag & STORE_COUNT_BIT),
    )


def pack_flag(material_index: int, store_occupancy: bool, store_count: bool) -> int:
    """Build a flag byte from its three fields."""
    if not 0 <= material_index <= MATERIAL_MASK:
        raise ValueError(f"Material index must be 0-63, got {material_index}")
    flag = material_index
    if store_occupancy:
        flag |= STORE_OCCUPANCY_BIT
    if store_count:
        flag |= STORE_COUNT_BIT
    return flag


def decode_delta(raw: bytes) -> Tuple[int, int, int]:
    """
    Decode a 12-byte position delta into an (x, y, z) integer triple.

    Args:
        raw: Exactly DELTA_SIZE bytes

    Returns:
        Signed delta per axis
    """
    if len(raw) != DELTA_SIZE:
        raise ValueError(f"Delta must be {DELTA_SIZE} bytes, got {len(raw)}")

    signedness = raw[0:3]
    high = raw[3:6]
    mid = raw[6:9]
    low = raw[9:12]

    delta = []
    for axis in range(AXES):
        negative = signedness[axis] == NEGATIVE
        if negative and high[axis] == NEGATIVE and mid[axis] == NEGATIVE and low[axis] != 0:
            magnitude = low[axis]
        else:
            magnitude = (
                high[axis] * DELTA_WEIGHTS[0]
                + mid[axis] * DELTA_WEIGHTS[1]
                + low[axis] * DELTA_WEIGHTS[2]
            )
        delta.append(-magnitude if negative else magnitude)

    return delta[0], delta[1], delta[2]


def encode_delta(delta: Tuple[int, int, int]) -> bytes:
    """
    Encode an (x, y, z) delta into its 12-byte wire form.

    Raises:
        ValueError: If any axis magnitude exceeds MAX_DELTA_MAGNITUDE
    """
    if len(delta) != AXES:
        raise ValueError(f"Delta must have 3 axes, got {len(delta)}")

    signedness = bytearray(AXES)
    high = bytearray(AXES)
    mid = bytearray(AXES)
    low = bytearray(AXES)

    for axis, value in enumerate(delta):
        value = int(value)
        magnitude = abs(value)
        if magnitude > MAX_DELTA_MAGNITUDE:
            raise ValueError(
                f"Delta {value} on axis {axis} exceeds +/-{MAX_DELTA_MAGNITUDE}"
            )

        if value < 0:
            signedness[axis] = NEGATIVE
            if magnitude < 256:
                high[axis] = NEGATIVE
                mid[axis] = NEGATIVE
                low[axis] = magnitude
                continue
        else:
            signedness[axis] = POSITIVE

        high[axis], remainder = divmod(magnitude, DELTA_WEIGHTS[0])
        mid[axis], low[axis] = divmod(remainder, DELTA_WEIGHTS[1])

    return bytes(signedness + high + mid + low)
