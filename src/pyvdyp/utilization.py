"""
Utilization classes and utilization vectors.

Stand quantities (basal area, density, diameter, height and the volume
chain) are decomposed by tree diameter into utilization classes:

    SMALL     trees below 7.5 cm
    ALL       all trees 7.5 cm and up (sum or aggregate of the four bands)
    U75TO125  7.5 - 12.5 cm
    U125TO175 12.5 - 17.5 cm
    U175TO225 17.5 - 22.5 cm
    OVER225   22.5 cm and up

A UtilizationVector holds one float per class, addressed either by
UtilizationClass or by the class index (-1 for SMALL through 4 for OVER225).
"""
import math
from enum import Enum
from typing import Iterable, Iterator, Optional, Tuple, Union

import numpy as np

from .exceptions import ProcessingError

__all__ = [
    'PI_40K',
    'UtilizationClass',
    'UtilizationVector',
    'UTIL_CLASSES',
    'ALL_BUT_SMALL',
    'BANDS_BUT_LARGEST',
    'VECTOR_LENGTH',
    'basal_area',
    'trees_per_hectare',
    'quad_mean_diameter',
    'sum_utilization_components',
    'store_sum_utilization_components',
    'normalize_utilization_components',
]

# Basal area (m2) of a tree with a 1 cm diameter
PI_40K = math.pi / 40000.0

VECTOR_LENGTH = 6


class UtilizationClass(Enum):
    """Diameter-based utilization classes.

    Each member carries its index (-1 .. 4), a display name and the lower
    and upper diameter bounds in cm.
    """

    SMALL = (-1, "<7.5 cm", 0.0, 7.5)
    ALL = (0, ">=7.5 cm", 7.5, 10000.0)
    U75TO125 = (1, "7.5 - 12.5 cm", 7.5, 12.5)
    U125TO175 = (2, "12.5 - 17.5 cm", 12.5, 17.5)
    U175TO225 = (3, "17.5 - 22.5 cm", 17.5, 22.5)
    OVER225 = (4, ">22.5 cm", 22.5, 10000.0)

    def __init__(self, index: int, class_name: str, low_bound: float, high_bound: float):
        self.index = index
        self.class_name = class_name
        self.low_bound = low_bound
        self.high_bound = high_bound

    @property
    def position(self) -> int:
        """Zero-based position of this class in a UtilizationVector."""
        return self.index + 1

    def previous(self) -> 'UtilizationClass':
        """The class immediately before this one (SMALL has none)."""
        if self is UtilizationClass.SMALL:
            raise ValueError("SMALL has no previous utilization class")
        return _BY_INDEX[self.index - 1]

    def next(self) -> 'UtilizationClass':
        """The class immediately after this one (OVER225 has none)."""
        if self is UtilizationClass.OVER225:
            raise ValueError("OVER225 has no next utilization class")
        return _BY_INDEX[self.index + 1]

    @classmethod
    def from_index(cls, index: int) -> 'UtilizationClass':
        try:
            return _BY_INDEX[index]
        except KeyError:
            raise ValueError(f"No utilization class with index {index}") from None


_BY_INDEX = {uc.index: uc for uc in UtilizationClass}

UTIL_CLASSES: Tuple[UtilizationClass, ...] = (
    UtilizationClass.U75TO125,
    UtilizationClass.U125TO175,
    UtilizationClass.U175TO225,
    UtilizationClass.OVER225,
)
ALL_BUT_SMALL: Tuple[UtilizationClass, ...] = (UtilizationClass.ALL,) + UTIL_CLASSES
BANDS_BUT_LARGEST: Tuple[UtilizationClass, ...] = UTIL_CLASSES[:-1]

Key = Union[UtilizationClass, int]


def _position(key: Key) -> int:
    if isinstance(key, UtilizationClass):
        return key.position
    if not -1 <= key <= 4:
        raise IndexError(f"Utilization class index {key} out of range -1..4")
    return key + 1


class UtilizationVector:
    """Six floats indexed by utilization class.

    The vector wraps its backing array without copying when given a float64
    numpy array, so a vector built over a row of a Bank array writes straight
    into that row.
    """

    __slots__ = ('_values',)

    def __init__(self, values: Optional[Union[np.ndarray, Iterable[float]]] = None):
        if values is None:
            self._values = np.zeros(VECTOR_LENGTH)
        else:
            self._values = np.asarray(values, dtype=float)
            if self._values.shape != (VECTOR_LENGTH,):
                raise ValueError(
                    f"Utilization vector needs {VECTOR_LENGTH} values, got shape {self._values.shape}"
                )

    @classmethod
    def of(cls, small: float, all_: float, u75: float, u125: float,
           u175: float, over225: float) -> 'UtilizationVector':
        return cls(np.array([small, all_, u75, u125, u175, over225], dtype=float))

    @classmethod
    def filled(cls, value: float) -> 'UtilizationVector':
        return cls(np.full(VECTOR_LENGTH, value, dtype=float))

    @classmethod
    def missing(cls) -> 'UtilizationVector':
        """A vector with every class unset (NaN)."""
        return cls.filled(math.nan)

    def __getitem__(self, key: Key) -> float:
        return float(self._values[_position(key)])

    def __setitem__(self, key: Key, value: float) -> None:
        self._values[_position(key)] = value

    def __iter__(self) -> Iterator[float]:
        return iter(float(v) for v in self._values)

    def __len__(self) -> int:
        return VECTOR_LENGTH

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UtilizationVector):
            return NotImplemented
        return bool(np.array_equal(self._values, other._values, equal_nan=True))

    def __repr__(self) -> str:
        formatted = ", ".join(f"{v:.5g}" for v in self._values)
        return f"UtilizationVector([{formatted}])"

    @property
    def values(self) -> np.ndarray:
        """The backing array (SMALL first)."""
        return self._values

    def copy(self) -> 'UtilizationVector':
        return UtilizationVector(self._values.copy())

    def assign(self, other: 'UtilizationVector') -> None:
        """Copy every class value from another vector into this one."""
        self._values[:] = other._values

    def fill(self, value: float) -> None:
        self._values[:] = value

    def is_missing(self, key: Key) -> bool:
        return math.isnan(self[key])


def basal_area(quad_mean_diameter: float, trees_per_hectare: float) -> float:
    """Basal area (m2/ha) from quadratic mean diameter (cm) and density."""
    if math.isnan(quad_mean_diameter) or math.isnan(trees_per_hectare):
        return 0.0
    return quad_mean_diameter * quad_mean_diameter * PI_40K * trees_per_hectare


def trees_per_hectare(basal_area: float, quad_mean_diameter: float) -> float:
    """Density (trees/ha) from basal area and quadratic mean diameter.

    Returns 0 when the diameter is zero or either input is unset.
    """
    if quad_mean_diameter == 0 or math.isnan(quad_mean_diameter) or math.isnan(basal_area):
        return 0.0
    return basal_area / PI_40K / (quad_mean_diameter * quad_mean_diameter)


def quad_mean_diameter(basal_area: float, trees_per_hectare: float) -> float:
    """Quadratic mean diameter (cm) from basal area and density.

    Returns 0 when either input is unset, non-positive or above 1e6.
    """
    if (math.isnan(basal_area) or basal_area <= 0 or basal_area > 1e6
            or math.isnan(trees_per_hectare) or trees_per_hectare <= 0
            or trees_per_hectare > 1e6):
        return 0.0
    return math.sqrt(basal_area / trees_per_hectare / PI_40K)


def sum_utilization_components(vector: UtilizationVector) -> float:
    """Sum of the four diameter bands."""
    return sum(vector[uc] for uc in UTIL_CLASSES)


def store_sum_utilization_components(vector: UtilizationVector) -> float:
    """Store the sum of the four bands in the ALL class and return it."""
    total = sum_utilization_components(vector)
    vector[UtilizationClass.ALL] = total
    return total


def normalize_utilization_components(vector: UtilizationVector) -> float:
    """Rescale the four bands so they sum to the ALL value.

    Returns:
        The scaling factor applied

    Raises:
        ProcessingError: If the bands sum to zero or less
    """
    total = sum_utilization_components(vector)
    if not total > 0:
        raise ProcessingError(
            f"Cannot normalize utilization components that sum to {total}"
        )
    factor = vector[UtilizationClass.ALL] / total
    for uc in UTIL_CLASSES:
        vector[uc] = vector[uc] * factor
    return factor
