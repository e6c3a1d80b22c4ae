"""
Terrain data model: voxels, chunks and the blob that owns them.

Coordinate convention:
- Chunk positions are in chunk space; one chunk spans 128 world units
- Voxels inside a chunk are stored flat, ordered by Y, then Z, then X
  (X varies fastest)
- Flat index = (y * size + z) * size + x

Occupancies are quantized to 1/255 on the wire, so voxels compare equal
when their material index and quantized occupancy bytes match.
"""

from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np

from smoothgrid.encoding import decode_f8, encode_f8
from smoothgrid.materials import Material, MaterialLike, lookup

# Constants
DEFAULT_CHUNK_SIZE_LOG2 = 5
MAX_CHUNK_SIZE_LOG2 = 8
# Terrain past 2^23 voxels is rejected by the engine; 32 voxels per chunk
CHUNK_POSITION_LIMIT = 2 ** 23 // 32  # 262,144

ChunkPosition = Tuple[int, int, int]


def validate_position(position) -> ChunkPosition:
    """
    Normalize a chunk position to an int triple and range-check it.

    Raises:
        ValueError: If the position is not 3 components or lies outside
                    +/-CHUNK_POSITION_LIMIT on any axis
    """
    if len(position) != 3:
        raise ValueError(f"Chunk position must have 3 components, got {position!r}")
    x, y, z = (int(c) for c in position)
    for value in (x, y, z):
        if abs(value) > CHUNK_POSITION_LIMIT:
            raise ValueError(
                f"Chunk position {(x, y, z)} exceeds +/-{CHUNK_POSITION_LIMIT}"
            )
    return x, y, z


def validate_chunk_size_log2(chunk_size_log2: int) -> int:
    if not 0 <= chunk_size_log2 <= MAX_CHUNK_SIZE_LOG2:
        raise ValueError(
            f"Chunk size exponent must be 0-{MAX_CHUNK_SIZE_LOG2}, got {chunk_size_log2}"
        )
    return int(chunk_size_log2)


@dataclass(frozen=True, eq=False)
class Voxel:
    """A single terrain voxel."""
    material: MaterialLike = Material.AIR
    solid_occupancy: float = 1.0
    water_occupancy: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "material", lookup(self.material))

    @property
    def solid_byte(self) -> int:
        return encode_f8(self.solid_occupancy)

    @property
    def water_byte(self) -> int:
        return encode_f8(self.water_occupancy)

    def key(self) -> Tuple[int, int, int]:
        """(material index, solid byte, water byte) as stored on the wire."""
        return int(self.material), self.solid_byte, self.water_byte

    def __eq__(self, other):
        if not isinstance(other, Voxel):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self):
        return hash(self.key())

    @classmethod
    def from_bytes(cls, material: int, solid_byte: int, water_byte: int) -> "Voxel":
        """Build a voxel from its wire representation."""
        return cls(material, decode_f8(solid_byte), decode_f8(water_byte))

    @classmethod
    def create(
        cls,
        material: Union[int, MaterialLike],
        solid_occupancy: float,
        water_occupancy: float = 0.0,
    ) -> "Voxel":
        """
        Build a voxel the way the engine's WriteVoxelChannels does.

        Occupancies are clamped to [0, 1], then:
        - nothing in the voxel becomes Air at full occupancy
        - water with no solid (or with Air) becomes a plain Water voxel
        - a fully solid, non-Air voxel holds no water
        """
        material = lookup(material)
        solid = encode_f8(solid_occupancy)
        water = encode_f8(water_occupancy)

        if solid == 0 and water == 0:
            return cls.from_bytes(Material.AIR, 255, 0)

        if (solid == 0 or material == Material.AIR) and water > 0:
            return cls.from_bytes(Material.WATER, water, 0)

        if solid == 255:
            water = 0
        return cls.from_bytes(material, solid, water)

    def canonical(self) -> "Voxel":
        """
        The form the encoder writes.

        A voxel with no solid and full water is written as plain Water, and
        a fully solid non-Air voxel drops its water channel.
        """
        material, solid, water = self.key()
        if solid == 0 and water == 255:
            return FULL_WATER_VOXEL
        if solid == 255 and water and material != Material.AIR:
            return Voxel.from_bytes(material, solid, 0)
        return self

    @property
    def is_canonical(self) -> bool:
        return self.canonical().key() == self.key()


AIR_VOXEL = Voxel(Material.AIR, 1.0, 0.0)
FULL_WATER_VOXEL = Voxel(Material.WATER, 1.0, 0.0)


def canonical_channels(
    materials: np.ndarray,
    solid: np.ndarray,
    water: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Apply Voxel.canonical to whole channel arrays.

    Returns:
        New (materials, solid, water) uint8 arrays
    """
    materials = materials.copy()
    solid = solid.copy()
    water = water.copy()

    full_water = (solid == 0) & (water == 255)
    materials[full_water] = Material.WATER
    solid[full_water] = 255
    water[full_water] = 0

    solid_only = (solid == 255) & (materials != Material.AIR)
    water[solid_only] = 0

    return materials, solid, water


@dataclass(eq=False, repr=False)
class Chunk:
    """
    A dense cube of chunk_size^3 voxels at a chunk-space position.

    Voxel channels are stored as flat uint8 arrays in Y, Z, X order:
    - materials: material index (0-63)
    - solid: quantized solid occupancy
    - water: quantized water occupancy
    """
    position: ChunkPosition
    materials: np.ndarray
    solid: np.ndarray
    water: np.ndarray
    chunk_size_log2: int = DEFAULT_CHUNK_SIZE_LOG2

    def __post_init__(self):
        self.position = validate_position(self.position)
        self.chunk_size_log2 = validate_chunk_size_log2(self.chunk_size_log2)

        count = self.voxel_count
        for name, limit in (("materials", 63), ("solid", 255), ("water", 255)):
            raw = np.asarray(getattr(self, name)).reshape(-1)
            if raw.dtype.kind not in "iu":
                raise ValueError(f"Channel {name} must hold integers, got dtype {raw.dtype}")
            if raw.shape[0] != count:
                raise ValueError(
                    f"Channel {name} must hold {count} voxels, got {raw.shape[0]}"
                )
            if raw.min() < 0 or raw.max() > limit:
                raise ValueError(f"Channel {name} values must be 0-{limit}")
            # Own the buffer; write_voxel must not reach the caller's array
            setattr(self, name, np.array(raw, dtype=np.uint8, copy=True))

    @property
    def chunk_size(self) -> int:
        return 1 << self.chunk_size_log2

    @property
    def voxel_count(self) -> int:
        return self.chunk_size ** 3

    @classmethod
    def filled(
        cls,
        position: ChunkPosition,
        voxel: Voxel = AIR_VOXEL,
        chunk_size_log2: int = DEFAULT_CHUNK_SIZE_LOG2,
    ) -> "Chunk":
        """
        Create a chunk where every voxel equals `voxel`.

        Example:
            >>> chunk = Chunk.filled((0, 0, 0))
            >>> chunk.write_voxel((3, 0, 7), Voxel(Material.GRASS, 1.0))
        """
        count = (1 << validate_chunk_size_log2(chunk_size_log2)) ** 3
        material, solid, water = voxel.key()
        return cls(
            position=position,
            materials=np.full(count, material, dtype=np.uint8),
            solid=np.full(count, solid, dtype=np.uint8),
            water=np.full(count, water, dtype=np.uint8),
            chunk_size_log2=chunk_size_log2,
        )

    @classmethod
    def from_voxels(
        cls,
        position: ChunkPosition,
        voxels: List[Voxel],
        chunk_size_log2: int = DEFAULT_CHUNK_SIZE_LOG2,
    ) -> "Chunk":
        """Create a chunk from a flat Y, Z, X ordered sequence of voxels."""
        keys = np.array([v.key() for v in voxels], dtype=np.uint8).reshape(-1, 3)
        return cls(
            position=position,
            materials=keys[:, 0],
            solid=keys[:, 1],
            water=keys[:, 2],
            chunk_size_log2=chunk_size_log2,
        )

    def _flat_index(self, coords: Tuple[int, int, int]) -> int:
        x, y, z = coords
        size = self.chunk_size
        if not (0 <= x < size and 0 <= y < size and 0 <= z < size):
            raise IndexError(f"Voxel {coords} outside chunk of size {size}")
        return (y * size + z) * size + x

    def get_voxel(self, coords: Tuple[int, int, int]) -> Voxel:
        """Voxel at in-chunk (x, y, z)."""
        return self[self._flat_index(coords)]

    def write_voxel(self, coords: Tuple[int, int, int], voxel: Voxel) -> None:
        """Write (or overwrite) the voxel at in-chunk (x, y, z)."""
        i = self._flat_index(coords)
        self.materials[i], self.solid[i], self.water[i] = voxel.key()

    def grid(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Channel views shaped (size, size, size), indexed [y, z, x]."""
        shape = (self.chunk_size,) * 3
        return (
            self.materials.reshape(shape),
            self.solid.reshape(shape),
            self.water.reshape(shape),
        )

    @property
    def voxels(self) -> List[Voxel]:
        return list(self)

    def __len__(self) -> int:
        return self.voxel_count

    def __getitem__(self, index: int) -> Voxel:
        return Voxel.from_bytes(
            int(self.materials[index]),
            int(self.solid[index]),
            int(self.water[index]),
        )

    def __iter__(self) -> Iterator[Voxel]:
        for i in range(self.voxel_count):
            yield self[i]

    def __eq__(self, other):
        if not isinstance(other, Chunk):
            return NotImplemented
        return (
            self.position == other.position
            and self.chunk_size_log2 == other.chunk_size_log2
            and np.array_equal(self.materials, other.materials)
            and np.array_equal(self.solid, other.solid)
            and np.array_equal(self.water, other.water)
        )

    __hash__ = None

    def __repr__(self) -> str:
        return f"Chunk(position={self.position}, chunk_size={self.chunk_size})"


@dataclass
class Blob:
    """
    A decoded SmoothGrid blob.

    Chunks are kept in encode order. Producers write them ascending by
    (x, y, z); write_chunk maintains that order.
    """
    chunk_size_log2: int = DEFAULT_CHUNK_SIZE_LOG2
    chunks: List[Chunk] = field(default_factory=list)

    def __post_init__(self):
        self.chunk_size_log2 = validate_chunk_size_log2(self.chunk_size_log2)

    @property
    def chunk_size(self) -> int:
        return 1 << self.chunk_size_log2

    def get_chunk(self, position: ChunkPosition) -> Optional[Chunk]:
        """Find the chunk at `position`, or None."""
        position = tuple(int(c) for c in position)
        for chunk in self.chunks:
            if chunk.position == position:
                return chunk
        return None

    def write_chunk(self, chunk: Chunk) -> None:
        """Insert or replace a chunk, keeping chunks sorted by position."""
        if chunk.chunk_size_log2 != self.chunk_size_log2:
            raise ValueError(
                f"Chunk size exponent {chunk.chunk_size_log2} does not match "
                f"blob's {self.chunk_size_log2}"
            )
        for i, existing in enumerate(self.chunks):
            if existing.position == chunk.position:
                self.chunks[i] = chunk
                return
        positions = [c.position for c in self.chunks]
        self.chunks.insert(bisect_left(positions, chunk.position), chunk)
