"""
Read-only coefficient lookup tables.

Every empirical equation in the engine draws its coefficients from one of
the tables held by CoefficientTables. Tables are keyed by tuples of genus
codes, BEC aliases, regions, utilization class indices and equation group
numbers. The key part '*' is a wildcard that matches anything; exact keys
are always preferred, then keys with the fewest wildcards, left to right.

Tables are built once (normally by the config loader) and shared between
engine instances. Missing entries in mandatory tables raise
CoefficientNotFoundError.
"""
from dataclasses import dataclass, field
from itertools import combinations
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from .bec import BecDefinition
from .exceptions import CoefficientNotFoundError, StandProcessingError

__all__ = [
    'WILDCARD',
    'CoefficientMap',
    'SiteCurveAgeMaximum',
    'NonprimaryHeightCoefficients',
    'ComponentSizeLimits',
    'UpperBounds',
    'CoefficientTables',
]

WILDCARD = '*'

_MISSING = object()


class CoefficientMap(Mapping):
    """Immutable mapping from key tuples to coefficients with wildcard lookup.

    Attributes:
        name: Table name used in error messages
    """

    def __init__(self, name: str, entries: Optional[Mapping[Tuple[Any, ...], Any]] = None,
                 default: Any = _MISSING):
        self.name = name
        self._entries: Mapping[Tuple[Any, ...], Any] = MappingProxyType(dict(entries or {}))
        self._default = default
        self._has_wildcards = any(WILDCARD in key for key in self._entries)

    def __getitem__(self, key: Tuple[Any, ...]) -> Any:
        return self._entries[key]

    def __iter__(self) -> Iterator[Tuple[Any, ...]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"CoefficientMap({self.name!r}, {len(self)} entries)"

    def find(self, *key: Any) -> Optional[Any]:
        """Look up a key, trying wildcard entries after an exact match.

        Returns:
            The matching entry, the table default, or None
        """
        if key in self._entries:
            return self._entries[key]
        if self._has_wildcards:
            for count in range(1, len(key) + 1):
                for positions in combinations(range(len(key)), count):
                    candidate = tuple(
                        WILDCARD if i in positions else part for i, part in enumerate(key)
                    )
                    if candidate in self._entries:
                        return self._entries[candidate]
        if self._default is not _MISSING:
            return self._default
        return None

    def lookup(self, *key: Any) -> Any:
        """Look up a key that must be present.

        Raises:
            CoefficientNotFoundError: If neither the key nor a wildcard entry matches
        """
        value = self.find(*key)
        if value is None:
            raise CoefficientNotFoundError(self.name, key)
        return value


@dataclass(frozen=True)
class SiteCurveAgeMaximum:
    """Age limit past which a site curve is extended asymptotically.

    Attributes:
        coastal_age_maximum: Total age limit on the coast (<= 0 for none)
        interior_age_maximum: Total age limit in the interior (<= 0 for none)
        t1: Extension half-life control (<= 0 disables the extension)
        t2: Years past the limit after which growth stops
    """
    coastal_age_maximum: float = 0.0
    interior_age_maximum: float = 0.0
    t1: float = 0.0
    t2: float = 0.0

    def age_maximum(self, coastal: bool) -> float:
        return self.coastal_age_maximum if coastal else self.interior_age_maximum


@dataclass(frozen=True)
class NonprimaryHeightCoefficients:
    """EMP053 coefficients; equation 1 uses the lead height, 2 the primary height."""
    equation_index: int
    a1: float
    a2: float


@dataclass(frozen=True)
class ComponentSizeLimits:
    """EMP061 size limits for a genus within a region."""
    max_lorey_height: float
    max_quad_mean_diameter: float
    min_quad_mean_diameter_to_lorey_height_ratio: float
    max_quad_mean_diameter_to_lorey_height_ratio: float


@dataclass(frozen=True)
class UpperBounds:
    """Basal area (m2/ha) and quadratic mean diameter (cm) upper bounds."""
    basal_area: float
    quad_mean_diameter: float


def _empty(name: str, default: Any = _MISSING) -> CoefficientMap:
    return CoefficientMap(name, {}, default)


@dataclass(frozen=True)
class CoefficientTables:
    """All coefficient tables consumed by the engine.

    Key layouts (parts in order):

        becs                              alias -> BecDefinition
        site_curves                       (species or genus, region) -> curve number
        site_curve_age_maximums           (curve,) -> SiteCurveAgeMaximum
        default_equation_groups           (genus, bec) -> equation group
        equation_modifier_groups          (equation group, itg) -> equation group
        volume_equation_groups            (genus, bec) -> group
        decay_equation_groups             (genus, bec) -> group
        breakage_equation_groups          (genus, bec) -> group
        hl_primary_p1                     (genus, region) -> [a0, a1, a2]
        hl_primary_p2                     (genus, region) -> [a1, a2]
        hl_nonprimary                     (genus, primary genus, region) -> NonprimaryHeightCoefficients
        by_species_dq                     (genus,) -> [a0, a1, a2]
        component_size_limits             (genus, region) -> ComponentSizeLimits
        basal_area_by_util                (uc index, genus, bec) -> [a0, a1]
        dq_by_util                        (uc index, genus, bec) -> [a0, a1, a2, a3]
        total_stand_whole_stem_volume     (volume group,) -> [a0 .. a8]
        whole_stem_volume_by_util         (uc index, volume group) -> [a0 .. a3]
        close_utilization_volume          (uc index, volume group) -> [a0, a1, a2]
        net_decay                         (uc index, decay group) -> [a0, a1, a2]
        decay_modifiers                   (genus, region) -> float (default 0)
        net_decay_waste                   (genus,) -> [a0 .. a5]
        waste_modifiers                   (genus, region) -> float (default 0)
        net_breakage                      (breakage group,) -> [a1 .. a4]
        small_component_probability       (genus,) -> [a0 .. a3]
        small_component_basal_area        (genus,) -> [a0 .. a3]
        small_component_dq                (genus,) -> [a0, a1]
        small_component_lorey_height      (genus,) -> [a0, a1]
        small_component_whole_stem_volume (genus,) -> [a0 .. a3]
        basal_area_yield                  (bec, basal area group) -> [a0 .. a6]
        upper_bounds                      (basal area group,) -> UpperBounds
    """
    becs: Mapping[str, BecDefinition] = field(default_factory=dict)
    site_curves: CoefficientMap = field(default_factory=lambda: _empty('site_curves'))
    site_curve_age_maximums: CoefficientMap = field(
        default_factory=lambda: _empty('site_curve_age_maximums', SiteCurveAgeMaximum())
    )
    default_equation_groups: CoefficientMap = field(
        default_factory=lambda: _empty('default_equation_groups')
    )
    equation_modifier_groups: CoefficientMap = field(
        default_factory=lambda: _empty('equation_modifier_groups')
    )
    volume_equation_groups: CoefficientMap = field(
        default_factory=lambda: _empty('volume_equation_groups')
    )
    decay_equation_groups: CoefficientMap = field(
        default_factory=lambda: _empty('decay_equation_groups')
    )
    breakage_equation_groups: CoefficientMap = field(
        default_factory=lambda: _empty('breakage_equation_groups')
    )
    hl_primary_p1: CoefficientMap = field(default_factory=lambda: _empty('hl_primary_p1'))
    hl_primary_p2: CoefficientMap = field(default_factory=lambda: _empty('hl_primary_p2'))
    hl_nonprimary: CoefficientMap = field(default_factory=lambda: _empty('hl_nonprimary'))
    by_species_dq: CoefficientMap = field(default_factory=lambda: _empty('by_species_dq'))
    component_size_limits: CoefficientMap = field(
        default_factory=lambda: _empty('component_size_limits')
    )
    basal_area_by_util: CoefficientMap = field(
        default_factory=lambda: _empty('basal_area_by_util')
    )
    dq_by_util: CoefficientMap = field(default_factory=lambda: _empty('dq_by_util'))
    total_stand_whole_stem_volume: CoefficientMap = field(
        default_factory=lambda: _empty('total_stand_whole_stem_volume')
    )
    whole_stem_volume_by_util: CoefficientMap = field(
        default_factory=lambda: _empty('whole_stem_volume_by_util')
    )
    close_utilization_volume: CoefficientMap = field(
        default_factory=lambda: _empty('close_utilization_volume')
    )
    net_decay: CoefficientMap = field(default_factory=lambda: _empty('net_decay'))
    decay_modifiers: CoefficientMap = field(
        default_factory=lambda: _empty('decay_modifiers', 0.0)
    )
    net_decay_waste: CoefficientMap = field(default_factory=lambda: _empty('net_decay_waste'))
    waste_modifiers: CoefficientMap = field(
        default_factory=lambda: _empty('waste_modifiers', 0.0)
    )
    net_breakage: CoefficientMap = field(default_factory=lambda: _empty('net_breakage'))
    small_component_probability: CoefficientMap = field(
        default_factory=lambda: _empty('small_component_probability')
    )
    small_component_basal_area: CoefficientMap = field(
        default_factory=lambda: _empty('small_component_basal_area')
    )
    small_component_dq: CoefficientMap = field(
        default_factory=lambda: _empty('small_component_dq')
    )
    small_component_lorey_height: CoefficientMap = field(
        default_factory=lambda: _empty('small_component_lorey_height')
    )
    small_component_whole_stem_volume: CoefficientMap = field(
        default_factory=lambda: _empty('small_component_whole_stem_volume')
    )
    basal_area_yield: CoefficientMap = field(
        default_factory=lambda: _empty('basal_area_yield')
    )
    upper_bounds: CoefficientMap = field(default_factory=lambda: _empty('upper_bounds'))

    def bec(self, alias: str) -> BecDefinition:
        """Get a BEC zone definition.

        Raises:
            StandProcessingError: If the zone is not defined
        """
        try:
            return self.becs[alias]
        except KeyError:
            raise StandProcessingError(f"Unknown BEC zone '{alias}'") from None

    def age_maximum(self, site_curve_number: int) -> SiteCurveAgeMaximum:
        return self.site_curve_age_maximums.find(site_curve_number)

    def decay_modifier(self, genus: str, region: Any) -> float:
        return self.decay_modifiers.find(genus, region)

    def waste_modifier(self, genus: str, region: Any) -> float:
        return self.waste_modifiers.find(genus, region)
