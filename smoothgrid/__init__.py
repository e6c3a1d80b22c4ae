"""
SmoothGrid - Codec for Roblox "SmoothGrid" terrain blobs.

A SmoothGrid blob holds:
- a 2-byte header (magic 0x01, chunk size exponent)
- chunks of chunk_size^3 voxels, each stored as a position delta plus
  run-length encoded voxels carrying a material and solid/water occupancy
"""

__version__ = "0.1.0"

from smoothgrid.codec import decode, encode, decode_chunk, encode_chunk, index_chunks
from smoothgrid.errors import (
    DecodeError,
    InvalidMagic,
    UnsupportedChunkSize,
    TruncatedInput,
    TruncatedChunk,
    VoxelBudgetExceeded,
    PositionOutOfRange,
)
from smoothgrid.materials import Material, ReservedMaterial, lookup
from smoothgrid.voxel import Blob, Chunk, Voxel, AIR_VOXEL, FULL_WATER_VOXEL

__all__ = [
    "decode",
    "encode",
    "decode_chunk",
    "encode_chunk",
    "index_chunks",
    "DecodeError",
    "InvalidMagic",
    "UnsupportedChunkSize",
    "TruncatedInput",
    "TruncatedChunk",
    "VoxelBudgetExceeded",
    "PositionOutOfRange",
    "Material",
    "ReservedMaterial",
    "lookup",
    "Blob",
    "Chunk",
    "Voxel",
    "AIR_VOXEL",
    "FULL_WATER_VOXEL",
]
