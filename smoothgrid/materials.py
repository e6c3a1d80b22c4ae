"""
Terrain material table.

Indices 0-22 are the named materials known to the format. The flag byte
reserves 6 bits for the index, so 23-63 may appear in data written by newer
engines; those are carried as ReservedMaterial and round-trip unchanged.
"""

from enum import IntEnum
from typing import Union

MAX_MATERIAL_INDEX = 63


class Material(IntEnum):
    """Named terrain materials."""
    AIR = 0x00
    WATER = 0x01
    GRASS = 0x02
    SLATE = 0x03
    CONCRETE = 0x04
    BRICK = 0x05
    SAND = 0x06
    WOOD_PLANKS = 0x07
    ROCK = 0x08
    GLACIER = 0x09
    SNOW = 0x0A
    SANDSTONE = 0x0B
    MUD = 0x0C
    BASALT = 0x0D
    GROUND = 0x0E
    CRACKED_LAVA = 0x0F
    ASPHALT = 0x10
    COBBLESTONE = 0x11
    ICE = 0x12
    LEAFY_GRASS = 0x13
    SALT = 0x14
    LIMESTONE = 0x15
    PAVEMENT = 0x16


# Engine-facing names, as they appear in Enum.Material
MATERIAL_NAMES = {
    Material.AIR: "Air",
    Material.WATER: "Water",
    Material.GRASS: "Grass",
    Material.SLATE: "Slate",
    Material.CONCRETE: "Concrete",
    Material.BRICK: "Brick",
    Material.SAND: "Sand",
    Material.WOOD_PLANKS: "WoodPlanks",
    Material.ROCK: "Rock",
    Material.GLACIER: "Glacier",
    Material.SNOW: "Snow",
    Material.SANDSTONE: "Sandstone",
    Material.MUD: "Mud",
    Material.BASALT: "Basalt",
    Material.GROUND: "Ground",
    Material.CRACKED_LAVA: "CrackedLava",
    Material.ASPHALT: "Asphalt",
    Material.COBBLESTONE: "Cobblestone",
    Material.ICE: "Ice",
    Material.LEAFY_GRASS: "LeafyGrass",
    Material.SALT: "Salt",
    Material.LIMESTONE: "Limestone",
    Material.PAVEMENT: "Pavement",
}

_BY_NAME = {name: material for material, name in MATERIAL_NAMES.items()}


class ReservedMaterial(int):
    """A material index (23-63) with no known name."""

    def __new__(cls, index: int) -> "ReservedMaterial":
        if not len(Material) <= index <= MAX_MATERIAL_INDEX:
            raise ValueError(f"Reserved material index must be 23-63, got {index}")
        return super().__new__(cls, index)

    @property
    def name(self) -> str:
        return f"Reserved{int(self)}"

    def __repr__(self) -> str:
        return f"ReservedMaterial({int(self)})"


MaterialLike = Union[Material, ReservedMaterial]


def lookup(index: int) -> MaterialLike:
    """
    Resolve a 6-bit material index.

    Returns:
        The Material member for 0-22, otherwise a ReservedMaterial

    Raises:
        ValueError: If index is outside 0-63
    """
    index = int(index)
    if not 0 <= index <= MAX_MATERIAL_INDEX:
        raise ValueError(f"Material index must be 0-63, got {index}")
    if index < len(Material):
        return Material(index)
    return ReservedMaterial(index)


def material_name(index: int) -> str:
    """Engine name for a material index, or "Reserved<N>" for unknown ones."""
    material = lookup(index)
    if isinstance(material, Material):
        return MATERIAL_NAMES[material]
    return material.name


def from_name(name: str) -> Material:
    """Resolve an engine material name (e.g. "WoodPlanks") to its Material."""
    return _BY_NAME[name]
