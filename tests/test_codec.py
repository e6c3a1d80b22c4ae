"""Tests for codec.py - chunk and blob decode/encode."""

import numpy as np
import pytest

from smoothgrid.codec import (
    HEADER_SIZE,
    decode,
    decode_chunk,
    encode,
    encode_chunk,
    index_chunks,
)
from smoothgrid.encoding import encode_delta
from smoothgrid.errors import (
    DecodeError,
    InvalidMagic,
    PositionOutOfRange,
    TruncatedChunk,
    TruncatedInput,
    UnsupportedChunkSize,
    VoxelBudgetExceeded,
)
from smoothgrid.materials import Material, ReservedMaterial
from smoothgrid.voxel import AIR_VOXEL, FULL_WATER_VOXEL, Blob, Chunk, Voxel

ORIGIN_DELTA = b"\x00" * 12
AIR_CHUNK_RUNS = b"\x80\xFF" * 128  # 32768 air voxels


def make_terrain_chunk(position, chunk_size_log2=2, seed=0):
    """A chunk with mixed runs, partial occupancy, water and reserved materials."""
    rng = np.random.RandomState(seed)
    chunk = Chunk.filled(position, chunk_size_log2=chunk_size_log2)
    size = chunk.chunk_size
    palette = [
        Voxel(Material.GRASS, 1.0),
        Voxel(Material.ROCK, 0.5),
        Voxel(Material.SAND, 0.25, 0.5),
        Voxel(Material.AIR, 1.0, 0.75),
        Voxel(ReservedMaterial(40), 1.0),
        FULL_WATER_VOXEL,
    ]
    # Ground layer
    for z in range(size):
        for x in range(size):
            chunk.write_voxel((x, 0, z), palette[0])
    # Scattered detail above it
    for _ in range(size * 2):
        x, y, z = rng.randint(0, size, size=3)
        chunk.write_voxel((int(x), int(y), int(z)), palette[rng.randint(len(palette))])
    return chunk


class TestScenarios:
    """Concrete wire examples."""

    def test_single_air_chunk(self):
        data = b"\x01\x05" + ORIGIN_DELTA + AIR_CHUNK_RUNS
        blob = decode(data)

        assert blob.chunk_size_log2 == 5
        assert len(blob.chunks) == 1
        chunk = blob.chunks[0]
        assert chunk.position == (0, 0, 0)
        assert len(chunk) == 32768
        assert all(v == Voxel(Material.AIR, 1.0, 0.0) for v in chunk.voxels)

    def test_encode_air_chunk(self):
        blob = Blob(chunk_size_log2=5, chunks=[Chunk.filled((0, 0, 0))])
        assert encode(blob) == b"\x01\x05" + ORIGIN_DELTA + AIR_CHUNK_RUNS

    def test_second_chunk_delta(self):
        blob = Blob(chunk_size_log2=0, chunks=[
            Chunk.filled((2, 0, 0), chunk_size_log2=0),
            Chunk.filled((4, 0, -1), chunk_size_log2=0),
        ])
        data = encode(blob)

        # header, delta, 1-byte run, then the second delta
        second = data[HEADER_SIZE + 12 + 1:HEADER_SIZE + 12 + 1 + 12]
        assert second == bytes([
            0x00, 0x00, 0xFF,
            0x00, 0x00, 0xFF,
            0x00, 0x00, 0xFF,
            0x02, 0x00, 0x01,
        ])
        assert decode(data) == blob

    def test_empty_blob(self):
        blob = decode(b"\x01\x05")
        assert blob.chunks == []
        assert encode(blob) == b"\x01\x05"


class TestRoundTrip:
    """Test decode(encode(b)) == b and encode(decode(s)) == s."""

    def test_blob_round_trip(self):
        blob = Blob(chunk_size_log2=2)
        for i, position in enumerate([(-5, 0, 3), (0, 0, 0), (0, 1, -1), (262144, -262144, 7)]):
            blob.write_chunk(make_terrain_chunk(position, seed=i))

        assert decode(encode(blob)) == blob

    def test_bytes_round_trip(self):
        blob = Blob(chunk_size_log2=3, chunks=[
            make_terrain_chunk((0, 0, 0), chunk_size_log2=3, seed=1),
            make_terrain_chunk((1, 0, 0), chunk_size_log2=3, seed=2),
        ])
        data = encode(blob)
        assert encode(decode(data)) == data

    def test_full_size_chunk(self):
        blob = Blob(chunk_size_log2=5, chunks=[make_terrain_chunk((3, -2, 1), chunk_size_log2=5)])
        assert decode(encode(blob)) == blob

    def test_unsorted_chunks_keep_order(self):
        blob = Blob(chunk_size_log2=1, chunks=[
            Chunk.filled((5, 0, 0), chunk_size_log2=1),
            Chunk.filled((-5, 0, 0), chunk_size_log2=1),
        ])
        assert [c.position for c in decode(encode(blob)).chunks] == [(5, 0, 0), (-5, 0, 0)]

    def test_non_canonical_input_round_trips_semantically(self):
        # Occupancy byte 0xFF stored explicitly, then 63 air voxels in two runs
        data = b"\x01\x02" + ORIGIN_DELTA + b"\x42\xFF" + b"\x80\x06" + b"\x80\x37"
        blob = decode(data)
        assert blob.chunks[0][0] == Voxel(Material.GRASS, 1.0)

        canonical = encode(blob)
        assert canonical != data
        assert decode(canonical) == blob

    def test_parallel_decode_matches(self):
        blob = Blob(chunk_size_log2=2, chunks=[
            make_terrain_chunk((x, 0, 0), seed=x) for x in range(6)
        ])
        data = encode(blob)
        assert decode(data, max_workers=4) == decode(data)

    def test_parallel_encode_matches(self):
        blob = Blob(chunk_size_log2=2, chunks=[
            make_terrain_chunk((0, y, 0), seed=y) for y in range(6)
        ])
        assert encode(blob, max_workers=4) == encode(blob)


class TestEncoderInvariants:
    """Test that the encoder writes canonical voxels."""

    def test_full_solid_drops_water(self):
        chunk = Chunk.filled((0, 0, 0), Voxel(Material.ROCK, 1.0, 0.5), chunk_size_log2=1)
        decoded = decode(encode(Blob(chunk_size_log2=1, chunks=[chunk])))
        assert all(v == Voxel(Material.ROCK, 1.0, 0.0) for v in decoded.chunks[0])

    def test_no_solid_full_water(self):
        chunk = Chunk.filled((0, 0, 0), Voxel(Material.GRASS, 0.0, 1.0), chunk_size_log2=1)
        data = encode(Blob(chunk_size_log2=1, chunks=[chunk]))
        assert data == b"\x01\x01" + ORIGIN_DELTA + b"\x81\x07"

    def test_long_runs_split(self):
        chunk = Chunk.filled((0, 0, 0), Voxel(Material.SNOW, 1.0), chunk_size_log2=3)
        data = encode_chunk(chunk)
        # 512 voxels -> two maximal runs
        assert data == ORIGIN_DELTA + b"\x8A\xFF" * 2

    def test_watery_runs_are_unrolled(self):
        voxel = Voxel(Material.SAND, 0.5, 0.5)
        chunk = Chunk.filled((0, 0, 0), voxel, chunk_size_log2=1)
        body = encode_chunk(chunk)[12:]
        assert len(body) == 8 * 4

    def test_chunk_size_mismatch(self):
        blob = Blob(chunk_size_log2=5, chunks=[Chunk.filled((0, 0, 0), chunk_size_log2=2)])
        with pytest.raises(ValueError, match="size exponent"):
            encode(blob)

    def test_position_out_of_range(self):
        chunk = Chunk.filled((0, 0, 0), chunk_size_log2=0)
        chunk.position = (300000, 0, 0)
        with pytest.raises(ValueError, match="exceeds"):
            encode(Blob(chunk_size_log2=0, chunks=[chunk]))


class TestDecodeChunk:
    """Test decoding one chunk at a time."""

    def test_relative_position(self):
        data = encode_delta((1, -2, 3)) + b"\x00"
        chunk, offset = decode_chunk(data, 0, previous=(10, 10, 10), chunk_size_log2=0)
        assert chunk.position == (11, 8, 13)
        assert offset == 13

    def test_encode_chunk_relative(self):
        chunk = Chunk.filled((4, 0, -1), chunk_size_log2=0)
        data = encode_chunk(chunk, previous=(2, 0, 0))
        decoded, _ = decode_chunk(data, 0, previous=(2, 0, 0), chunk_size_log2=0)
        assert decoded == chunk


class TestIndex:
    """Test the chunk index pass."""

    def test_offsets_and_positions(self):
        blob = Blob(chunk_size_log2=2, chunks=[
            make_terrain_chunk((0, 0, 0), seed=3),
            make_terrain_chunk((0, 0, 1), seed=4),
            make_terrain_chunk((2, -7, 0), seed=5),
        ])
        data = encode(blob)
        entries = index_chunks(data)

        assert [e.position for e in entries] == [c.position for c in blob.chunks]
        assert entries[0].offset == HEADER_SIZE
        assert entries[-1].end == len(data)
        for entry, following in zip(entries, entries[1:]):
            assert entry.end == following.offset
            assert entry.body_offset == entry.offset + 12

    def test_index_reports_errors(self):
        with pytest.raises(TruncatedChunk):
            index_chunks(b"\x01\x05" + ORIGIN_DELTA + AIR_CHUNK_RUNS[:-2])


class TestDecodeErrors:
    """Test error handling for malformed blobs."""

    def test_invalid_magic(self):
        with pytest.raises(InvalidMagic, match="Invalid magic") as excinfo:
            decode(b"\x02\x05")
        assert excinfo.value.offset == 0

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            decode(b"\x02\x05")
        assert issubclass(TruncatedChunk, DecodeError)

    def test_unsupported_chunk_size(self):
        with pytest.raises(UnsupportedChunkSize) as excinfo:
            decode(b"\x01\x09")
        assert excinfo.value.offset == 1

    @pytest.mark.parametrize("data", [b"", b"\x01"])
    def test_truncated_header(self, data):
        with pytest.raises(TruncatedInput):
            decode(data)

    def test_truncated_final_chunk(self):
        data = b"\x01\x05" + ORIGIN_DELTA + AIR_CHUNK_RUNS[:-2]
        with pytest.raises(TruncatedInput) as excinfo:
            decode(data)
        assert excinfo.value.offset == len(data)

    @pytest.mark.parametrize("max_workers", [None, 2])
    def test_trailing_partial_chunk(self, max_workers):
        data = b"\x01\x00" + ORIGIN_DELTA + b"\x00" + b"\x00" * 5
        with pytest.raises(TruncatedChunk):
            decode(data, max_workers=max_workers)

    def test_truncated_mid_run(self):
        data = b"\x01\x01" + ORIGIN_DELTA + b"\x80"
        with pytest.raises(TruncatedInput) as excinfo:
            decode(data)
        assert excinfo.value.offset == len(data)

    @pytest.mark.parametrize("max_workers", [None, 2])
    def test_voxel_budget_exceeded(self, max_workers):
        data = b"\x01\x00" + ORIGIN_DELTA + b"\x80\x01"
        with pytest.raises(VoxelBudgetExceeded) as excinfo:
            decode(data, max_workers=max_workers)
        assert excinfo.value.offset == HEADER_SIZE + 12

    @pytest.mark.parametrize("max_workers", [None, 2])
    def test_budget_exceeded_mid_chunk(self, max_workers):
        # 8-voxel chunk: 5 voxels, then a 4-voxel run
        data = b"\x01\x01" + ORIGIN_DELTA + b"\x80\x04" + b"\x82\x03"
        with pytest.raises(VoxelBudgetExceeded):
            decode(data, max_workers=max_workers)

    @pytest.mark.parametrize("max_workers", [None, 2])
    def test_position_out_of_range(self, max_workers):
        data = b"\x01\x00" + encode_delta((0, 262145, 0)) + b"\x00"
        with pytest.raises(PositionOutOfRange) as excinfo:
            decode(data, max_workers=max_workers)
        assert excinfo.value.offset == HEADER_SIZE

    @pytest.mark.parametrize("max_workers", [None, 2])
    def test_accumulated_position_out_of_range(self, max_workers):
        data = (
            b"\x01\x00"
            + encode_delta((0, 0, -262144)) + b"\x00"
            + encode_delta((0, 0, -1)) + b"\x00"
        )
        with pytest.raises(PositionOutOfRange) as excinfo:
            decode(data, max_workers=max_workers)
        assert excinfo.value.offset == HEADER_SIZE + 13

    def test_unknown_materials_are_not_errors(self):
        data = b"\x01\x00" + ORIGIN_DELTA + b"\x3F"
        blob = decode(data)
        assert blob.chunks[0][0].material == 63
        assert encode(blob) == data


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
