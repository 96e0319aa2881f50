"""
Per-species numeric state of one layer at one point in time.

A Bank holds, for every retained species of a layer, its scalar attributes
(ages, site index, curve and equation groups) and its utilization vectors
(basal area, density, diameter, height and the volume chain) in numpy
arrays. Row 0 of every array is the stand total; rows 1..N are the
species in input order.

Banks are copied, not shared, between growth years: the engine reads one
Bank and writes a fresh copy for the next year.
"""
import math
from typing import List, Optional

import numpy as np

from .bec import BecDefinition
from .coefficients import CoefficientTables
from .logging_config import get_logger
from .model import Layer, Species, SpeciesDistribution
from .species import GenusCode
from .utilization import (
    VECTOR_LENGTH,
    UtilizationClass,
    UtilizationVector,
    quad_mean_diameter,
    store_sum_utilization_components,
)

__all__ = ['Bank', 'MIN_BASAL_AREA', 'NO_CURVE', 'UTILIZATION_ATTRIBUTES']

logger = get_logger(__name__)

# Species with less basal area than this (m2/ha) are not retained
MIN_BASAL_AREA = 0.001

NO_CURVE = -9

# Volume group 10 is not used for estimation; its stands use group 11
_VOLUME_GROUP_REMAP = {10: 11}

UTILIZATION_ATTRIBUTES = (
    'basal_areas',
    'trees_per_hectare',
    'quad_mean_diameters',
    'lorey_heights',
    'whole_stem_volumes',
    'close_utilization_volumes',
    'cu_volumes_minus_decay',
    'cu_volumes_minus_decay_and_waste',
    'cu_volumes_minus_decay_waste_and_breakage',
)

# Attributes whose stand total is a plain sum over species
_SUMMED_ATTRIBUTES = (
    'basal_areas',
    'trees_per_hectare',
    'whole_stem_volumes',
    'close_utilization_volumes',
    'cu_volumes_minus_decay',
    'cu_volumes_minus_decay_and_waste',
    'cu_volumes_minus_decay_waste_and_breakage',
)

_SPECIES_VECTOR_FIELDS = dict(zip(UTILIZATION_ATTRIBUTES, (
    'basal_area',
    'trees_per_hectare',
    'quad_mean_diameter',
    'lorey_height',
    'whole_stem_volume',
    'close_utilization_volume',
    'cu_volume_minus_decay',
    'cu_volume_minus_decay_and_waste',
    'cu_volume_minus_decay_waste_and_breakage',
)))


def _optional(value: Optional[float]) -> float:
    return math.nan if value is None else float(value)


class Bank:
    """Numeric state of one layer.

    Attributes:
        bec: BEC zone of the polygon
        species_names: Genus code per row ('' for the stand row)
        sp64_distributions: Species distributions per row
        species_indices: 1-based genus index per row
        percentages_of_forested_land: Share of the layer per species
        site_indices, dominant_heights, age_totals, years_at_breast_height,
        years_to_breast_height: Per-row site attributes (NaN when unknown)
        site_curve_numbers: Per-row site curve (NO_CURVE when unknown)
        volume_equation_groups, decay_equation_groups,
        breakage_equation_groups: Per-row equation groups
        basal_areas ... cu_volumes_minus_decay_waste_and_breakage:
            (N + 1, 6) arrays of utilization vectors, SMALL in column 0
    """

    def __init__(self, n_species: int, bec: BecDefinition):
        size = n_species + 1
        self.bec = bec
        self.species_names: List[str] = [''] * size
        self.sp64_distributions: List[List[SpeciesDistribution]] = [[] for _ in range(size)]
        self.species_indices = np.zeros(size, dtype=int)
        self.percentages_of_forested_land = np.zeros(size)
        self.site_indices = np.full(size, np.nan)
        self.dominant_heights = np.full(size, np.nan)
        self.age_totals = np.full(size, np.nan)
        self.years_at_breast_height = np.full(size, np.nan)
        self.years_to_breast_height = np.full(size, np.nan)
        self.site_curve_numbers = np.full(size, NO_CURVE, dtype=int)
        self.volume_equation_groups = np.zeros(size, dtype=int)
        self.decay_equation_groups = np.zeros(size, dtype=int)
        self.breakage_equation_groups = np.zeros(size, dtype=int)
        for name in UTILIZATION_ATTRIBUTES:
            setattr(self, name, np.zeros((size, VECTOR_LENGTH)))

    @classmethod
    def from_layer(cls, layer: Layer, bec: BecDefinition, tables: CoefficientTables) -> 'Bank':
        """Populate a Bank from a layer's species records.

        Species with less than MIN_BASAL_AREA are dropped. Equation groups
        that were not supplied are looked up by genus and BEC zone.

        Raises:
            CoefficientNotFoundError: If an equation group cannot be determined
        """
        retained = [s for s in layer.species if _retained(s)]
        dropped = len(layer.species) - len(retained)
        if dropped:
            logger.debug("Dropping %d species with basal area below %s", dropped, MIN_BASAL_AREA)

        bank = cls(len(retained), bec)
        for i, species in enumerate(retained, start=1):
            bank._load_species(i, species, tables)
        bank.percentages_of_forested_land[0] = sum(bank.percentages_of_forested_land[1:])
        bank.set_stand_totals()
        return bank

    def _load_species(self, i: int, species: Species, tables: CoefficientTables) -> None:
        genus = species.genus
        self.species_names[i] = genus
        self.sp64_distributions[i] = list(species.distributions)
        self.species_indices[i] = GenusCode.from_string(genus).species_index
        self.percentages_of_forested_land[i] = species.percent_genus
        self.site_indices[i] = _optional(species.site_index)
        self.dominant_heights[i] = _optional(species.dominant_height)
        self.age_totals[i] = _optional(species.age_total)
        self.years_to_breast_height[i] = _optional(species.years_to_breast_height)
        self.years_at_breast_height[i] = _optional(species.years_at_breast_height)
        if species.site_curve_number is not None:
            self.site_curve_numbers[i] = species.site_curve_number

        if species.volume_group is not None:
            self.volume_equation_groups[i] = species.volume_group
        else:
            group = tables.volume_equation_groups.lookup(genus, self.bec.alias)
            self.volume_equation_groups[i] = _VOLUME_GROUP_REMAP.get(group, group)
        self.decay_equation_groups[i] = (
            species.decay_group if species.decay_group is not None
            else tables.decay_equation_groups.lookup(genus, self.bec.alias)
        )
        self.breakage_equation_groups[i] = (
            species.breakage_group if species.breakage_group is not None
            else tables.breakage_equation_groups.lookup(genus, self.bec.alias)
        )

        for attribute, field_name in _SPECIES_VECTOR_FIELDS.items():
            values = np.nan_to_num(getattr(species, field_name).values, nan=0.0)
            row = getattr(self, attribute)[i]
            row[:] = values
            vector = UtilizationVector(row)
            if row[UtilizationClass.ALL.position] == 0 and attribute in _SUMMED_ATTRIBUTES:
                store_sum_utilization_components(vector)

    @property
    def n_species(self) -> int:
        return len(self.species_names) - 1

    @property
    def indices(self) -> range:
        """Row numbers of the individual species."""
        return range(1, self.n_species + 1)

    @property
    def region(self):
        return self.bec.region

    def vector(self, attribute: str, i: int) -> UtilizationVector:
        """A UtilizationVector view onto one row of a utilization array."""
        if attribute not in UTILIZATION_ATTRIBUTES:
            raise AttributeError(f"Bank has no utilization attribute '{attribute}'")
        return UtilizationVector(getattr(self, attribute)[i])

    def copy(self) -> 'Bank':
        """An independent copy of this Bank."""
        other = Bank.__new__(Bank)
        for name, value in self.__dict__.items():
            if isinstance(value, np.ndarray):
                setattr(other, name, value.copy())
            elif name == 'sp64_distributions':
                setattr(other, name, [list(d) for d in value])
            elif isinstance(value, list):
                setattr(other, name, list(value))
            else:
                setattr(other, name, value)
        return other

    def set_stand_totals(self) -> None:
        """Aggregate the species rows into row 0.

        Basal area, density and volumes are summed; lorey height is the
        basal-area weighted mean; diameter is derived from basal area and
        density.
        """
        rows = slice(1, self.n_species + 1)
        for name in _SUMMED_ATTRIBUTES:
            array = getattr(self, name)
            array[0] = array[rows].sum(axis=0)

        basal_area = self.basal_areas[0]
        weighted = (self.lorey_heights[rows] * self.basal_areas[rows]).sum(axis=0)
        with np.errstate(divide='ignore', invalid='ignore'):
            self.lorey_heights[0] = np.where(basal_area > 0, weighted / basal_area, 0.0)

        for column in range(VECTOR_LENGTH):
            self.quad_mean_diameters[0, column] = quad_mean_diameter(
                float(basal_area[column]), float(self.trees_per_hectare[0, column])
            )


def _retained(species: Species) -> bool:
    basal_area = species.basal_area[UtilizationClass.ALL]
    if math.isnan(basal_area):
        basal_area = sum(
            0.0 if math.isnan(v) else v for v in species.basal_area.values[2:]
        )
    return basal_area >= MIN_BASAL_AREA
