"""
Processing state of one polygon.

PolygonProcessingState wraps the current Bank of the polygon's primary layer
together with everything the pipeline derives from it: species rankings and
equation groups, the primary species' height/age/site details, the
compatibility variables and the record of non-fatal fallbacks.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional

from .bank import Bank
from .bec import BecDefinition
from .logging_config import get_logger
from .model import Polygon
from .utilization import UtilizationVector

__all__ = [
    'OutcomeStatus',
    'Outcome',
    'SpeciesRankingDetails',
    'PrimarySpeciesDetails',
    'VolumeVariable',
    'SmallUtilizationClassVariable',
    'CompatibilityVariables',
    'PolygonProcessingState',
]

logger = get_logger(__name__)


class OutcomeStatus(Enum):
    FOUND = "found"
    DEFAULTED = "defaulted"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class Outcome:
    """Result of filling in one missing value.

    Attributes:
        step: Pipeline step that produced the outcome
        species_index: Bank row the value belongs to
        status: Whether the value was found, defaulted or left unset
        value: The value used (NaN when unresolved)
        reason: Why the value was defaulted or left unset
    """
    step: str
    species_index: int
    status: OutcomeStatus
    value: float
    reason: str = ''


@dataclass(frozen=True)
class SpeciesRankingDetails:
    """Species ranking and the equation groups derived from it.

    Attributes:
        primary_index: Bank row of the primary species
        secondary_index: Bank row of the secondary species, if any
        inventory_type_group: ITG of the layer
        basal_area_group1: Equation group for basal area yield and volumes
        basal_area_group3: Equation group of the primary species, used for
            upper bounds
    """
    primary_index: int
    secondary_index: Optional[int]
    inventory_type_group: int
    basal_area_group1: int
    basal_area_group3: int


@dataclass(frozen=True)
class PrimarySpeciesDetails:
    """Dominant height, site index and ages of the primary species."""
    dominant_height: float
    site_index: float
    total_age: float
    years_at_breast_height: float
    years_to_breast_height: float

    def grown(self, dominant_height_growth: float, years: int = 1) -> 'PrimarySpeciesDetails':
        """Details after growing the given number of years."""
        return replace(
            self,
            dominant_height=self.dominant_height + dominant_height_growth,
            total_age=self.total_age + years,
            years_at_breast_height=self.years_at_breast_height + years,
        )


class VolumeVariable(Enum):
    """Stage of the volume chain a compatibility variable applies to."""
    WHOLE_STEM_VOL = "whole stem"
    CLOSE_UTIL_VOL = "close utilization"
    CLOSE_UTIL_VOL_LESS_DECAY = "close utilization less decay"
    CLOSE_UTIL_VOL_LESS_DECAY_LESS_WASTAGE = "close utilization less decay and waste"


class SmallUtilizationClassVariable(Enum):
    BASAL_AREA = "basal area"
    QUAD_MEAN_DIAMETER = "quadratic mean diameter"
    LOREY_HEIGHT = "lorey height"
    WHOLE_STEM_VOLUME = "whole stem volume"


@dataclass
class CompatibilityVariables:
    """Offsets that anchor one species' estimates to its supplied values."""
    volume: Dict[VolumeVariable, UtilizationVector] = field(
        default_factory=lambda: {v: UtilizationVector() for v in VolumeVariable}
    )
    basal_area: UtilizationVector = field(default_factory=UtilizationVector)
    quad_mean_diameter: UtilizationVector = field(default_factory=UtilizationVector)
    small: Dict[SmallUtilizationClassVariable, float] = field(
        default_factory=lambda: {v: 0.0 for v in SmallUtilizationClassVariable}
    )


class PolygonProcessingState:
    """Mutable state carried through the pipeline for one polygon.

    Attributes:
        polygon: The polygon being processed
        bank: Current state of the primary layer
        veteran_bank: State of the veteran layer, if the polygon has one
        outcomes: Non-fatal fallbacks recorded so far
    """

    def __init__(self, polygon: Polygon, bank: Bank, veteran_bank: Optional[Bank] = None):
        self.polygon = polygon
        self.bank = bank
        self.veteran_bank = veteran_bank
        self.outcomes: List[Outcome] = []
        self._ranking: Optional[SpeciesRankingDetails] = None
        self._primary_details: Optional[PrimarySpeciesDetails] = None
        self._compatibility: Optional[List[Optional[CompatibilityVariables]]] = None

    @property
    def bec(self) -> BecDefinition:
        return self.bank.bec

    @property
    def description(self) -> str:
        return self.polygon.description

    # -- rankings ----------------------------------------------------------

    @property
    def has_rankings(self) -> bool:
        return self._ranking is not None

    @property
    def ranking(self) -> SpeciesRankingDetails:
        if self._ranking is None:
            raise RuntimeError("Species rankings have not been determined")
        return self._ranking

    def set_ranking(self, ranking: SpeciesRankingDetails) -> None:
        self._ranking = ranking

    @property
    def primary_index(self) -> int:
        return self.ranking.primary_index

    @property
    def secondary_index(self) -> Optional[int]:
        return self.ranking.secondary_index

    @property
    def primary_genus(self) -> str:
        return self.bank.species_names[self.primary_index]

    # -- primary species details -------------------------------------------

    @property
    def primary_details(self) -> PrimarySpeciesDetails:
        if self._primary_details is None:
            raise RuntimeError("Primary species details have not been calculated")
        return self._primary_details

    def set_primary_details(self, details: PrimarySpeciesDetails) -> None:
        self._primary_details = details

    # -- compatibility variables -------------------------------------------

    @property
    def has_compatibility_variables(self) -> bool:
        return self._compatibility is not None

    def compatibility_variables(self, i: int) -> CompatibilityVariables:
        if self._compatibility is None:
            raise RuntimeError("Compatibility variables have not been set")
        variables = self._compatibility[i]
        if variables is None:
            raise IndexError(f"No compatibility variables for row {i}")
        return variables

    def set_compatibility_variables(self, variables: List[Optional[CompatibilityVariables]]) -> None:
        self._compatibility = variables

    # -- outcomes ----------------------------------------------------------

    def record(self, outcome: Outcome) -> None:
        """Record a fallback and log it when the value was not simply found."""
        self.outcomes.append(outcome)
        if outcome.status is not OutcomeStatus.FOUND:
            logger.warning(
                "%s: %s for species %d %s (%s)",
                self.description, outcome.step, outcome.species_index,
                outcome.status.value, outcome.reason,
            )

    def outcomes_with_status(self, status: OutcomeStatus) -> List[Outcome]:
        return [o for o in self.outcomes if o.status is status]
