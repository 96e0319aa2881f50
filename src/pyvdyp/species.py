"""
Genus code enumeration and species-composition tables.

This module provides a GenusCode enum that inherits from (str, Enum) allowing
it to be used as a string wherever genus codes are expected, while
providing type safety and validation. It also holds the fixed tables used to
classify a layer by its species composition: the inventory type group (ITG)
decision table, the hardwood genera and the genus pairs that are merged
before species are ranked.

Usage:
    from pyvdyp.species import GenusCode, find_inventory_type_group

    genus = GenusCode.from_string("pl")
    print(genus.value)          # "PL"
    print(genus.species_index)  # 12

    find_inventory_type_group("F", "C", 50.0)  # 2
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from .exceptions import ProcessingError

__all__ = [
    'GenusCode',
    'HARDWOODS',
    'ITG_PURE',
    'PURE_SPECIES_THRESHOLD',
    'PRIMARY_SPECIES_TO_COMBINE',
    'DEFAULT_EQUATION_GROUPS',
    'INTERIOR_EQUATION_GROUP_EXCEPTIONS',
    'get_genus_code',
    'validate_genus_code',
    'find_inventory_type_group',
]


class GenusCode(str, Enum):
    """
    The sixteen genera (SP0 codes) tracked by the engine.

    Each member's value is the genus code; ``species_index`` is its fixed
    1-based position, used to index per-genus tables.
    """

    ALDER = "AC"
    """Cottonwood/poplar group (Populus spp.)."""

    ASPEN = "AT"
    """Trembling aspen (Populus tremuloides)."""

    BALSAM = "B"
    """True firs (Abies spp.)."""

    CEDAR = "C"
    """Western redcedar (Thuja plicata)."""

    RED_ALDER = "D"
    """Red alder (Alnus rubra)."""

    BIRCH = "E"
    """Birches (Betula spp.)."""

    DOUGLAS_FIR = "F"
    """Douglas-fir (Pseudotsuga menziesii)."""

    HEMLOCK = "H"
    """Hemlocks (Tsuga spp.)."""

    LARCH = "L"
    """Western larch (Larix occidentalis)."""

    MAPLE = "MB"
    """Bigleaf maple (Acer macrophyllum)."""

    WHITEBARK_PINE = "PA"
    """Whitebark and limber pine (Pinus albicaulis, P. flexilis)."""

    LODGEPOLE_PINE = "PL"
    """Lodgepole pine (Pinus contorta)."""

    WHITE_PINE = "PW"
    """Western white pine (Pinus monticola)."""

    PONDEROSA_PINE = "PY"
    """Ponderosa pine (Pinus ponderosa)."""

    SPRUCE = "S"
    """Spruces (Picea spp.)."""

    YELLOW_CEDAR = "Y"
    """Yellow-cedar (Callitropsis nootkatensis)."""

    @property
    def species_index(self) -> int:
        """1-based position of the genus in the fixed genus order."""
        return _ORDER.index(self) + 1

    @classmethod
    def from_string(cls, code: str) -> 'GenusCode':
        """Convert a string to a GenusCode.

        Args:
            code: Genus code, case-insensitive

        Returns:
            Matching GenusCode

        Raises:
            ValueError: If the code is not a known genus
        """
        normalized = code.strip().upper()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown genus code: '{code}'")

    @classmethod
    def is_valid(cls, code: str) -> bool:
        try:
            cls.from_string(code)
            return True
        except ValueError:
            return False

    @property
    def is_hardwood(self) -> bool:
        return self.value in HARDWOODS


_ORDER: List[GenusCode] = list(GenusCode)


def get_genus_code(code: str) -> GenusCode:
    """Get a GenusCode from a string (alias of GenusCode.from_string)."""
    return GenusCode.from_string(code)


def validate_genus_code(code: str) -> str:
    """Validate a genus code and return it in canonical form.

    Raises:
        ValueError: If the code is not a known genus
    """
    return GenusCode.from_string(code).value


HARDWOODS: FrozenSet[str] = frozenset({"AC", "AT", "D", "E", "MB"})

# Genus pairs whose percentages are merged before ranking
PRIMARY_SPECIES_TO_COMBINE: Tuple[Tuple[str, str], ...] = (("PL", "PA"), ("C", "Y"))

# Share (%) above which the primary genus alone determines the ITG
PURE_SPECIES_THRESHOLD = 79.999

ITG_PURE: Dict[str, int] = {
    "AC": 36, "AT": 42, "B": 18, "C": 9, "D": 38, "E": 40, "F": 1, "H": 12,
    "L": 34, "MB": 39, "PA": 28, "PL": 28, "PW": 27, "PY": 32, "S": 21, "Y": 9,
}

# Default basal area group by primary species index (1-based; slot 0 unused)
DEFAULT_EQUATION_GROUPS: Tuple[int, ...] = (
    0, 1, 2, 3, 4, 1, 2, 5, 6, 7, 1, 9, 8, 9, 9, 10, 4,
)

# Species indices whose default group is offset by 20 in the interior
INTERIOR_EQUATION_GROUP_EXCEPTIONS: FrozenSet[int] = frozenset({3, 4, 5, 6, 10})
INTERIOR_EQUATION_GROUP_OFFSET = 20


def _in(genus: Optional[str], members: Sequence[str]) -> bool:
    return genus is not None and genus in members


def find_inventory_type_group(primary_genus: str, secondary_genus: Optional[str],
                              primary_percentage: float) -> int:
    """Classify a layer into an inventory type group.

    A primary genus holding more than PURE_SPECIES_THRESHOLD percent of the
    layer maps straight to its pure-stand group. Otherwise the group is
    chosen from the primary genus and, for most genera, the secondary.

    Args:
        primary_genus: Genus code of the primary species
        secondary_genus: Genus code of the secondary species, if any
        primary_percentage: Share of the layer held by the primary species

    Returns:
        Inventory type group number (1-42)

    Raises:
        ValueError: If primary and secondary are the same genus
        ProcessingError: If the primary genus is unknown
    """
    if secondary_genus is not None and primary_genus == secondary_genus:
        raise ValueError("The primary and secondary genera cannot be the same")

    if primary_percentage > PURE_SPECIES_THRESHOLD:
        itg = ITG_PURE.get(primary_genus)
        if itg is None:
            raise ProcessingError(f"Unrecognized primary genus: {primary_genus}")
        return itg

    sec = secondary_genus
    hardwood = sec is not None and sec in HARDWOODS

    if primary_genus == "F":
        if _in(sec, ("C", "Y")):
            return 2
        if _in(sec, ("B", "H")):
            return 3
        if sec == "S":
            return 4
        if _in(sec, ("PL", "PA")):
            return 5
        if sec == "PY":
            return 6
        if _in(sec, ("L", "PW")):
            return 7
        return 8
    if primary_genus in ("C", "Y"):
        if _in(sec, ("H", "B", "S")):
            return 11
        return 10
    if primary_genus == "H":
        if _in(sec, ("C", "Y")):
            return 14
        if sec == "B":
            return 15
        if sec == "S":
            return 16
        if hardwood:
            return 17
        return 13
    if primary_genus == "B":
        if _in(sec, ("C", "Y", "H")):
            return 19
        return 20
    if primary_genus == "S":
        if _in(sec, ("C", "Y", "H")):
            return 23
        if sec == "B":
            return 24
        if sec == "PL":
            return 25
        if hardwood:
            return 26
        return 22
    if primary_genus == "PW":
        return 27
    if primary_genus in ("PL", "PA"):
        if _in(sec, ("PL", "PA")):
            return 28
        if _in(sec, ("F", "PW", "L", "PY")):
            return 29
        if hardwood:
            return 31
        return 30
    if primary_genus == "PY":
        return 32
    if primary_genus == "L":
        if sec == "F":
            return 33
        return 34
    if primary_genus == "AC":
        return 36 if hardwood else 35
    if primary_genus == "D":
        return 38 if hardwood else 37
    if primary_genus == "MB":
        return 39
    if primary_genus == "E":
        return 40
    if primary_genus == "AT":
        return 42 if hardwood else 41

    raise ProcessingError(f"Unrecognized primary genus: {primary_genus}")
