"""
Polygon, layer and species input records.

These are plain records produced by whatever parses the inventory. The
engine consumes them read-only; validation lives in free functions so the
records stay simple.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .control_variables import MIN_POLYGON_YEAR
from .exceptions import StandProcessingError, validate_positive, validate_range
from .species import validate_genus_code
from .utilization import UtilizationVector

__all__ = [
    'LayerType',
    'SpeciesDistribution',
    'Species',
    'Layer',
    'Polygon',
    'PERCENT_TOTAL_TOLERANCE',
    'validate_layer',
    'validate_polygon',
]

PERCENT_TOTAL_TOLERANCE = 0.01


class LayerType(str, Enum):
    PRIMARY = "PRIMARY"
    VETERAN = "VETERAN"


@dataclass(frozen=True)
class SpeciesDistribution:
    """A species (SP64 code) within a genus and its share of the genus."""
    species_code: str
    percentage: float = 100.0

    def __post_init__(self):
        validate_positive(self.percentage, "percentage")


def _missing_vector() -> UtilizationVector:
    return UtilizationVector.missing()


@dataclass
class Species:
    """One genus within a layer.

    Site attributes that are unknown are None. Utilization vectors default
    to all-missing; basal area and density are required for processing.
    """
    genus: str
    percent_genus: float
    distributions: List[SpeciesDistribution] = field(default_factory=list)
    site_index: Optional[float] = None
    site_curve_number: Optional[int] = None
    age_total: Optional[float] = None
    years_to_breast_height: Optional[float] = None
    dominant_height: Optional[float] = None
    volume_group: Optional[int] = None
    decay_group: Optional[int] = None
    breakage_group: Optional[int] = None
    basal_area: UtilizationVector = field(default_factory=_missing_vector)
    trees_per_hectare: UtilizationVector = field(default_factory=_missing_vector)
    quad_mean_diameter: UtilizationVector = field(default_factory=_missing_vector)
    lorey_height: UtilizationVector = field(default_factory=_missing_vector)
    whole_stem_volume: UtilizationVector = field(default_factory=_missing_vector)
    close_utilization_volume: UtilizationVector = field(default_factory=_missing_vector)
    cu_volume_minus_decay: UtilizationVector = field(default_factory=_missing_vector)
    cu_volume_minus_decay_and_waste: UtilizationVector = field(default_factory=_missing_vector)
    cu_volume_minus_decay_waste_and_breakage: UtilizationVector = field(
        default_factory=_missing_vector
    )

    def __post_init__(self):
        self.genus = validate_genus_code(self.genus)
        validate_range(self.percent_genus, 0.0, 100.0, "percent_genus")

    @property
    def fraction_genus(self) -> float:
        return self.percent_genus / 100.0

    @property
    def years_at_breast_height(self) -> Optional[float]:
        if self.age_total is None or self.years_to_breast_height is None:
            return None
        return self.age_total - self.years_to_breast_height

    @property
    def leading_species_code(self) -> Optional[str]:
        """SP64 code of the first species distribution, if any."""
        return self.distributions[0].species_code if self.distributions else None


@dataclass
class Layer:
    layer_type: LayerType
    species: List[Species] = field(default_factory=list)

    @property
    def percent_total(self) -> float:
        return sum(s.percent_genus for s in self.species)


@dataclass
class Polygon:
    """A forest polygon at its inventory year.

    Attributes:
        identifier: Polygon name or map key
        year: Inventory year
        bec_zone: BEC zone alias
        layers: Layers by type; a primary layer is required
        percent_forest_land: Forested share of the polygon
        target_year: Year to grow to when the control variables defer to the polygon
    """
    identifier: str
    year: int
    bec_zone: str
    layers: Dict[LayerType, Layer] = field(default_factory=dict)
    percent_forest_land: float = 100.0
    target_year: Optional[int] = None

    def __post_init__(self):
        validate_range(self.percent_forest_land, 0.0, 100.0, "percent_forest_land")

    @property
    def description(self) -> str:
        return f"{self.identifier} {self.year}"

    @property
    def primary_layer(self) -> Layer:
        try:
            return self.layers[LayerType.PRIMARY]
        except KeyError:
            raise StandProcessingError(
                f"Polygon {self.description} has no primary layer"
            ) from None

    @property
    def veteran_layer(self) -> Optional[Layer]:
        return self.layers.get(LayerType.VETERAN)


def validate_layer(layer: Layer, polygon_description: str) -> None:
    """Check that a layer has species whose percentages total 100.

    Raises:
        StandProcessingError: If the layer is empty or its percentages are off
    """
    if not layer.species:
        raise StandProcessingError(
            f"Polygon {polygon_description} {layer.layer_type.value} layer has no species"
        )
    total = layer.percent_total
    if math.isnan(total) or abs(total - 100.0) > PERCENT_TOTAL_TOLERANCE:
        raise StandProcessingError(
            f"Polygon {polygon_description} {layer.layer_type.value} layer species "
            f"percentages total {total:.4f}, expected 100"
        )


def validate_polygon(polygon: Polygon) -> None:
    """Check polygon-level preconditions before processing.

    Raises:
        StandProcessingError: If the year is too early, the primary layer is
            missing or a layer fails validation
    """
    if polygon.year < MIN_POLYGON_YEAR:
        raise StandProcessingError(
            f"Polygon {polygon.description}: year {polygon.year} is before {MIN_POLYGON_YEAR}"
        )
    validate_layer(polygon.primary_layer, polygon.description)
    if polygon.veteran_layer is not None:
        validate_layer(polygon.veteran_layer, polygon.description)
