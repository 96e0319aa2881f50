"""
Forward processing engine.

ForwardProcessingEngine runs one polygon through an ordered pipeline:

    CHECK_FOR_WORK
    CALCULATE_MISSING_SITE_CURVES
    CALCULATE_COVERAGES
    DETERMINE_POLYGON_RANKINGS
    ESTIMATE_MISSING_SITE_INDICES
    ESTIMATE_MISSING_YEARS_TO_BREAST_HEIGHT
    CALCULATE_DOMINANT_HEIGHT_AGE_SITE_INDEX
    SET_COMPATIBILITY_VARIABLES
    GROW

Processing may stop after any step. The GROW step advances the primary
layer one year at a time until the target year: each year reads the
current Bank and produces a new one, which then replaces it.

An engine holds only read-only collaborators (coefficient tables, site
curves, control variables). All per-polygon state lives in the
PolygonProcessingState created by process_polygon, so one engine may
process any number of polygons, one after another.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, MutableSequence, Optional, Sequence, Tuple

from .bank import NO_CURVE, Bank
from .bec import BecDefinition, Region
from .coefficients import CoefficientTables
from .control_variables import ForwardControlVariables
from .estimation import EMPIRICAL_OCCUPANCY, EstimationMethods
from .exceptions import (
    CurveError,
    NoAnswerError,
    ProcessingError,
    SiteCurveError,
    SpeciesError,
)
from .logging_config import get_logger, log_growth_summary, log_stage
from .model import Polygon, validate_polygon
from .processing_state import (
    CompatibilityVariables,
    Outcome,
    OutcomeStatus,
    PolygonProcessingState,
    PrimarySpeciesDetails,
    SmallUtilizationClassVariable,
    SpeciesRankingDetails,
    VolumeVariable,
)
from .reconciliation import reconcile_components
from .results import OutputSink
from .site_curves import BREAST_HEIGHT, SiteCurveService, SiteIndexAgeType
from .species import (
    DEFAULT_EQUATION_GROUPS,
    INTERIOR_EQUATION_GROUP_EXCEPTIONS,
    INTERIOR_EQUATION_GROUP_OFFSET,
    PRIMARY_SPECIES_TO_COMBINE,
    find_inventory_type_group,
)
from .utilization import (
    PI_40K,
    UTIL_CLASSES,
    UtilizationClass,
    UtilizationVector,
    basal_area,
    quad_mean_diameter,
    store_sum_utilization_components,
    sum_utilization_components,
    trees_per_hectare,
)

__all__ = [
    'ExecutionStep',
    'GrowthResult',
    'ForwardProcessingEngine',
    'combine_percentages',
    'compatibility_logit',
    'whole_stem_compatibility',
]

logger = get_logger(__name__)

ALL = UtilizationClass.ALL
SMALL = UtilizationClass.SMALL
_ALL = ALL.position
_SMALL = SMALL.position

# Band diameters used when the input carries none
DEFAULT_QUAD_MEAN_DIAMETERS = {
    UtilizationClass.U75TO125: 10.0,
    UtilizationClass.U125TO175: 15.0,
    UtilizationClass.U175TO225: 20.0,
    UtilizationClass.OVER225: 25.0,
}

# Compatibility variables are only computed above these base values
V_BASE_MIN = 0.1
B_BASE_MIN = 0.01

COMPATIBILITY_LOGIT_LIMIT = 7.0
WHOLE_STEM_LOG_FLOOR = -2.0

# Small component diameter range (cm)
SMALL_DQ_MIN = 4.0
SMALL_DQ_MAX = 7.5

# Extension curve growth rate floor (m/yr)
MIN_EXTENSION_RATE = 0.0005


class ExecutionStep(Enum):
    """Pipeline steps in execution order."""

    NONE = 0
    CHECK_FOR_WORK = 1
    CALCULATE_MISSING_SITE_CURVES = 2
    CALCULATE_COVERAGES = 3
    DETERMINE_POLYGON_RANKINGS = 4
    ESTIMATE_MISSING_SITE_INDICES = 5
    ESTIMATE_MISSING_YEARS_TO_BREAST_HEIGHT = 6
    CALCULATE_DOMINANT_HEIGHT_AGE_SITE_INDEX = 7
    SET_COMPATIBILITY_VARIABLES = 8
    GROW = 9
    ALL = 10

    def predecessor(self) -> 'ExecutionStep':
        if self is ExecutionStep.NONE:
            raise ValueError("ExecutionStep.NONE has no predecessor")
        return ExecutionStep(self.value - 1)

    def successor(self) -> 'ExecutionStep':
        if self is ExecutionStep.ALL:
            raise ValueError("ExecutionStep.ALL has no successor")
        return ExecutionStep(self.value + 1)

    def includes(self, step: 'ExecutionStep') -> bool:
        """True if running up to this step runs the given step."""
        return self.value >= step.value


@dataclass(frozen=True)
class GrowthResult:
    """One grown year.

    Attributes:
        year: Year the bank describes
        bank: Primary layer at the end of the year
        dominant_height_growth: Growth of the primary species dominant height (m)
        basal_area_growth: Growth of the layer basal area (m2/ha)
    """
    year: int
    bank: Bank
    dominant_height_growth: float
    basal_area_growth: float


def combine_percentages(species_names: Sequence[str], combination_group: Sequence[str],
                        percentages: MutableSequence[float]) -> None:
    """Merge the percentages of a pair of genera for ranking.

    If both genera of the pair are present, the one with the higher
    percentage absorbs the other, whose percentage becomes 0. On a tie the
    first encountered absorbs the second. Otherwise nothing changes.

    Args:
        species_names: Genus per row
        combination_group: Exactly two genus codes
        percentages: Percentage per row, updated in place

    Raises:
        ValueError: If the group is not a pair or the sequences differ in length
    """
    if len(combination_group) != 2:
        raise ValueError(
            f"combination_group must have size 2; it has size {len(combination_group)}"
        )
    if any(g is None for g in combination_group):
        raise ValueError("combination_group must not contain None")
    if len(species_names) != len(percentages):
        raise ValueError(
            f"The length of species_names ({len(species_names)}) must match that of "
            f"percentages ({len(percentages)})"
        )

    indices = [i for i, name in enumerate(species_names) if name in combination_group]
    if len(indices) != 2:
        return

    first, second = indices
    if percentages[second] > percentages[first]:
        first, second = second, first
    percentages[first] = percentages[first] + percentages[second]
    percentages[second] = 0.0


def _logit(ratio_: float) -> float:
    if ratio_ <= 0.0:
        return -COMPATIBILITY_LOGIT_LIMIT
    if ratio_ >= 1.0:
        return COMPATIBILITY_LOGIT_LIMIT
    value = math.log(ratio_ / (1.0 - ratio_))
    return max(-COMPATIBILITY_LOGIT_LIMIT, min(COMPATIBILITY_LOGIT_LIMIT, value))


def compatibility_logit(actual: float, base: float, static: float) -> float:
    """Logit-space offset between the supplied and model share of a base value.

    Args:
        actual: Supplied value
        base: Value both shares are taken of
        static: Model estimate of the supplied value

    Returns:
        logit(actual / base) - logit(static / base), each clamped to [-7, 7]
    """
    return _logit(actual / base) - _logit(static / base)


def whole_stem_compatibility(actual: float, basal_area_: float, static: float) -> float:
    """Log-space offset between supplied and model whole stem volume per m2 of basal area."""
    actual_ratio = actual / basal_area_
    static_ratio = static / basal_area_
    actual_log = math.log(actual_ratio) if actual_ratio > 0 else WHOLE_STEM_LOG_FLOOR
    static_log = math.log(static_ratio) if static_ratio > 0 else WHOLE_STEM_LOG_FLOOR
    return actual_log - static_log


def _is_missing(value: float) -> bool:
    return math.isnan(value)


class ForwardProcessingEngine:
    """Projects polygons forward in time.

    Attributes:
        tables: Coefficient tables shared by all polygons
        site_curves: Site curve service
        control: Forward control variables
        estimators: Estimation equations over the tables
        species_to_combine: Genus pairs merged for ranking
    """

    def __init__(self, tables: CoefficientTables, site_curves: SiteCurveService,
                 control: Optional[ForwardControlVariables] = None,
                 species_to_combine: Sequence[Tuple[str, str]] = PRIMARY_SPECIES_TO_COMBINE):
        self.tables = tables
        self.site_curves = site_curves
        self.control = control or ForwardControlVariables()
        self.estimators = EstimationMethods(tables)
        self.species_to_combine = tuple(species_to_combine)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def process_polygon(self, polygon: Polygon, last_step: ExecutionStep = ExecutionStep.ALL,
                        sink: Optional[OutputSink] = None) -> PolygonProcessingState:
        """Run a polygon through the pipeline up to and including last_step.

        Args:
            polygon: Polygon to process
            last_step: Last step to execute
            sink: Receives the primary layer at the starting year and after
                every grown year

        Returns:
            The processing state after the last executed step

        Raises:
            StandProcessingError: If the polygon fails validation
            ProcessingError: If a step cannot complete for this polygon
        """
        logger.info("Starting processing of polygon %s", polygon.description)

        validate_polygon(polygon)
        bec = self.tables.bec(polygon.bec_zone)
        target_year = self.control.target_year(polygon.year, polygon.target_year)

        bank = Bank.from_layer(polygon.primary_layer, bec, self.tables)
        veteran_bank = None
        if polygon.veteran_layer is not None:
            veteran_bank = Bank.from_layer(polygon.veteran_layer, bec, self.tables)
        state = PolygonProcessingState(polygon, bank, veteran_bank)

        self._execute(state, last_step, target_year, sink)
        return state

    def _execute(self, state: PolygonProcessingState, last_step: ExecutionStep,
                 target_year: int, sink: Optional[OutputSink]) -> None:
        stages = (
            (ExecutionStep.CHECK_FOR_WORK, self.check_for_work),
            (ExecutionStep.CALCULATE_MISSING_SITE_CURVES, self.calculate_missing_site_curves),
            (ExecutionStep.CALCULATE_COVERAGES, self.calculate_coverages),
            (ExecutionStep.DETERMINE_POLYGON_RANKINGS, self.determine_polygon_rankings),
            (ExecutionStep.ESTIMATE_MISSING_SITE_INDICES, self.estimate_missing_site_indices),
            (ExecutionStep.ESTIMATE_MISSING_YEARS_TO_BREAST_HEIGHT,
             self.estimate_missing_years_to_breast_height),
            (ExecutionStep.CALCULATE_DOMINANT_HEIGHT_AGE_SITE_INDEX,
             self.calculate_dominant_height_age_site_index),
            (ExecutionStep.SET_COMPATIBILITY_VARIABLES, self.set_compatibility_variables),
        )
        for step, stage in stages:
            if not last_step.includes(step):
                return
            log_stage(logger, state.description, step.name)
            stage(state)

        if not last_step.includes(ExecutionStep.GROW):
            return
        log_stage(logger, state.description, ExecutionStep.GROW.name)

        start_year = state.polygon.year
        if sink is not None:
            sink.write(state.polygon, start_year, state.bank)

        for year in range(start_year, target_year):
            result = self.grow(state, year)
            state.bank = result.bank
            state.set_primary_details(
                state.primary_details.grown(result.dominant_height_growth)
            )
            log_growth_summary(
                logger, state.description, result.year,
                result.dominant_height_growth, result.basal_area_growth,
            )
            if sink is not None:
                sink.write(state.polygon, result.year, state.bank)

    # =========================================================================
    # Stages
    # =========================================================================

    def check_for_work(self, state: PolygonProcessingState) -> None:
        """Fail if the primary layer has no species to process.

        Raises:
            ProcessingError: If no species has basal area
        """
        if state.bank.n_species == 0:
            raise ProcessingError(
                f"Polygon {state.description} primary layer has no species with basal area"
            )

    def _map_site_curve(self, code: str, region: Region) -> Optional[int]:
        return self.tables.site_curves.find(code, region.value)

    def _default_site_curve(self, code: str, bec: BecDefinition) -> Optional[int]:
        try:
            return self.site_curves.default_curve(code, bec.is_coastal)
        except SpeciesError:
            return None

    def calculate_missing_site_curves(self, state: PolygonProcessingState) -> None:
        """Assign a site curve to every species that was not given one.

        The curve map is consulted for the species' leading SP64 code, then
        for its genus; without a map entry the site curve service's default
        curve is used.

        Raises:
            ProcessingError: If no curve can be found for a species
        """
        bank = state.bank
        for i in bank.indices:
            if bank.site_curve_numbers[i] != NO_CURVE:
                continue

            codes = []
            if bank.sp64_distributions[i]:
                codes.append(bank.sp64_distributions[i][0].species_code)
            codes.append(bank.species_names[i])

            curve = None
            for code in codes:
                curve = self._map_site_curve(code, bank.region)
                if curve is not None:
                    break
            if curve is None:
                for code in codes:
                    curve = self._default_site_curve(code, bank.bec)
                    if curve is not None:
                        break
            if curve is None:
                raise ProcessingError(
                    f"No site curve could be found for species {bank.species_names[i]} "
                    f"in region {bank.region.value}"
                )
            bank.site_curve_numbers[i] = curve

    def calculate_coverages(self, state: PolygonProcessingState) -> None:
        """Set each species' share of the layer from its share of basal area."""
        self._set_coverages(state.bank)

    @staticmethod
    def _set_coverages(bank: Bank) -> None:
        total = bank.basal_areas[0, _ALL]
        logger.debug(
            "Calculating coverages for %d species; layer basal area %.4f", bank.n_species, total
        )
        for i in bank.indices:
            bank.percentages_of_forested_land[i] = bank.basal_areas[i, _ALL] / total * 100.0

    def determine_polygon_rankings(self, state: PolygonProcessingState) -> None:
        """Select primary and secondary species and derive the equation groups."""
        bank = state.bank
        if bank.n_species == 0:
            raise ProcessingError("Cannot find the primary species of a layer with no species")

        percentages = list(bank.percentages_of_forested_land)
        for pair in self.species_to_combine:
            combine_percentages(bank.species_names, pair, percentages)

        highest, highest_index = 0.0, -1
        second, second_index = 0.0, -1
        for i in bank.indices:
            if percentages[i] > highest:
                second, second_index = highest, highest_index
                highest, highest_index = percentages[i], i
            elif percentages[i] > second:
                second, second_index = percentages[i], i

        if highest_index == -1:
            raise ProcessingError("No species has a percentage above 0")

        primary_genus = bank.species_names[highest_index]
        secondary_genus = bank.species_names[second_index] if second_index != -1 else None
        itg = find_inventory_type_group(primary_genus, secondary_genus, highest)

        default_group = self.tables.default_equation_groups.lookup(primary_genus, bank.bec.alias)
        modifier_group = self.tables.equation_modifier_groups.find(default_group, itg)
        group1 = modifier_group if modifier_group is not None else default_group

        species_index = int(bank.species_indices[highest_index])
        group3 = DEFAULT_EQUATION_GROUPS[species_index]
        if bank.region is Region.INTERIOR and species_index in INTERIOR_EQUATION_GROUP_EXCEPTIONS:
            group3 += INTERIOR_EQUATION_GROUP_OFFSET

        bank.site_curve_numbers[0] = bank.site_curve_numbers[highest_index]
        state.set_ranking(SpeciesRankingDetails(
            primary_index=highest_index,
            secondary_index=second_index if second_index != -1 else None,
            inventory_type_group=itg,
            basal_area_group1=int(group1),
            basal_area_group3=group3,
        ))
        logger.debug(
            "%s: primary %s, secondary %s, ITG %d, groups %d/%d",
            state.description, primary_genus, secondary_genus, itg, group1, group3,
        )

    def estimate_missing_site_indices(self, state: PolygonProcessingState) -> None:
        """Fill in missing site indices through curve conversions.

        A missing primary site index becomes the mean of the other species'
        site indices converted to the primary curve. Other species still
        missing one then take the primary's, converted to their curve.

        Raises:
            ProcessingError: If a conversion fails for a reason other than
                the curves having no defined conversion
        """
        bank = state.bank
        step = ExecutionStep.ESTIMATE_MISSING_SITE_INDICES.name
        primary = state.primary_index
        primary_curve = int(bank.site_curve_numbers[primary])

        if _is_missing(bank.site_indices[primary]):
            converted = []
            for i in bank.indices:
                if i == primary or _is_missing(bank.site_indices[i]):
                    continue
                curve = int(bank.site_curve_numbers[i])
                try:
                    value = self.site_curves.convert_site_index(
                        curve, float(bank.site_indices[i]), primary_curve
                    )
                except NoAnswerError:
                    state.record(Outcome(
                        step, i, OutcomeStatus.UNRESOLVED, math.nan,
                        f"no conversion from curve {curve} to curve {primary_curve}",
                    ))
                    continue
                except (CurveError, SpeciesError) as e:
                    raise ProcessingError(
                        f"Site index conversion from curve {curve} to {primary_curve} failed: {e}"
                    ) from e
                if value > BREAST_HEIGHT:
                    converted.append(value)

            if converted:
                bank.site_indices[primary] = sum(converted) / len(converted)
                state.record(Outcome(
                    step, primary, OutcomeStatus.DEFAULTED, float(bank.site_indices[primary]),
                    f"mean of {len(converted)} converted site indices",
                ))

        primary_site_index = float(bank.site_indices[primary])
        if not _is_missing(primary_site_index):
            for i in bank.indices:
                if i == primary or not _is_missing(bank.site_indices[i]):
                    continue
                curve = int(bank.site_curve_numbers[i])
                try:
                    bank.site_indices[i] = self.site_curves.convert_site_index(
                        primary_curve, primary_site_index, curve
                    )
                except NoAnswerError:
                    state.record(Outcome(
                        step, i, OutcomeStatus.UNRESOLVED, math.nan,
                        f"no conversion from curve {primary_curve} to curve {curve}",
                    ))
                    continue
                except (CurveError, SpeciesError) as e:
                    raise ProcessingError(
                        f"Site index conversion from curve {primary_curve} to {curve} failed: {e}"
                    ) from e
                state.record(Outcome(step, i, OutcomeStatus.FOUND, float(bank.site_indices[i])))

        bank.site_indices[0] = primary_site_index

    def estimate_missing_years_to_breast_height(self, state: PolygonProcessingState) -> None:
        """Fill in missing years to breast height.

        Derived from total age and breast height age where both are known,
        otherwise from the species' site curve and site index (or the
        primary's site index when the species has none). Failures leave the
        value missing.
        """
        bank = state.bank
        step = ExecutionStep.ESTIMATE_MISSING_YEARS_TO_BREAST_HEIGHT.name

        default_site_index = float(bank.site_indices[state.primary_index])
        if _is_missing(default_site_index):
            for i in bank.indices:
                if not _is_missing(bank.site_indices[i]):
                    default_site_index = float(bank.site_indices[i])
                    break

        for i in bank.indices:
            if not _is_missing(bank.years_to_breast_height[i]):
                continue

            age_total = bank.age_totals[i]
            at_breast = bank.years_at_breast_height[i]
            if not _is_missing(at_breast) and age_total > at_breast:
                bank.years_to_breast_height[i] = age_total - at_breast
                continue

            own = not _is_missing(bank.site_indices[i])
            site_index = float(bank.site_indices[i]) if own else default_site_index
            try:
                value = self.site_curves.years_to_breast_height(
                    int(bank.site_curve_numbers[i]), site_index
                )
            except SiteCurveError as e:
                state.record(Outcome(step, i, OutcomeStatus.UNRESOLVED, math.nan, str(e)))
                continue
            bank.years_to_breast_height[i] = value
            status = OutcomeStatus.FOUND if own else OutcomeStatus.DEFAULTED
            state.record(Outcome(
                step, i, status, value, '' if own else "estimated from the stand site index"
            ))

    def calculate_dominant_height_age_site_index(self, state: PolygonProcessingState) -> None:
        """Resolve the primary species' dominant height, ages and site index.

        Raises:
            ProcessingError: With reason code 2 if neither dominant nor lorey
                height is known, 5 if no species has an age, 7 if no species
                has a site index
        """
        bank = state.bank
        primary = state.primary_index
        genus = bank.species_names[primary]

        dominant_height = float(bank.dominant_heights[primary])
        if _is_missing(dominant_height):
            lorey_height = float(bank.lorey_heights[primary, _ALL])
            if _is_missing(lorey_height) or lorey_height <= 0:
                raise ProcessingError(
                    f"Neither dominant nor lorey height is available for primary species {genus}",
                    reason_code=2,
                )
            dominant_height = self.estimators.lead_height_from_primary_height(
                lorey_height, genus, bank.region.value,
                float(bank.trees_per_hectare[primary, _ALL]),
            )

        total_age = float(bank.age_totals[primary])
        at_breast = float(bank.years_at_breast_height[primary])
        to_breast = float(bank.years_to_breast_height[primary])
        active: Optional[int] = None

        if _is_missing(total_age):
            active = self._first_with_value(state, bank.age_totals)
            if active is None:
                raise ProcessingError("Age data unavailable for all species", reason_code=5)
            total_age = float(bank.age_totals[active])
            if not _is_missing(to_breast):
                at_breast = total_age - to_breast
            elif not _is_missing(at_breast):
                to_breast = total_age - at_breast
            else:
                at_breast = float(bank.years_at_breast_height[active])
                to_breast = float(bank.years_to_breast_height[active])
        if _is_missing(at_breast) and not _is_missing(to_breast):
            at_breast = total_age - to_breast

        site_index = float(bank.site_indices[primary])
        if _is_missing(site_index):
            secondary = state.secondary_index
            if secondary is not None and not _is_missing(bank.site_indices[secondary]):
                active = secondary
            elif active is None or _is_missing(bank.site_indices[active]):
                active = self._first_with_value(state, bank.site_indices, prefer_secondary=False)
            if active is None:
                raise ProcessingError("Site index data unavailable for all species", reason_code=7)
            site_index = float(bank.site_indices[active])
        else:
            active = primary

        try:
            converted = self.site_curves.convert_site_index(
                int(bank.site_curve_numbers[active]), site_index, int(bank.site_curve_numbers[0])
            )
        except SiteCurveError:
            converted = math.nan
        if converted > BREAST_HEIGHT:
            site_index = converted

        state.set_primary_details(PrimarySpeciesDetails(
            dominant_height=dominant_height,
            site_index=site_index,
            total_age=total_age,
            years_at_breast_height=at_breast,
            years_to_breast_height=to_breast,
        ))

    @staticmethod
    def _first_with_value(state: PolygonProcessingState, values,
                          prefer_secondary: bool = True) -> Optional[int]:
        secondary = state.secondary_index
        if prefer_secondary and secondary is not None and not _is_missing(values[secondary]):
            return secondary
        for i in state.bank.indices:
            if not _is_missing(values[i]):
                return i
        return None

    # =========================================================================
    # Compatibility variables
    # =========================================================================

    def set_compatibility_variables(self, state: PolygonProcessingState) -> None:
        """Compute every species' compatibility variables.

        When the control variables switch them off, all are zero.
        """
        bank = state.bank
        variables: List[Optional[CompatibilityVariables]] = [None]
        for i in bank.indices:
            if self.control.compatibility_variables:
                variables.append(self.calculate_compatibility_variables(state, i))
            else:
                variables.append(CompatibilityVariables())
        state.set_compatibility_variables(variables)

    def calculate_compatibility_variables(self, state: PolygonProcessingState,
                                          i: int) -> CompatibilityVariables:
        """Offsets that reproduce species i's supplied values from model estimates."""
        bank = state.bank
        genus = bank.species_names[i]
        region = bank.region.value
        lorey_height = float(bank.lorey_heights[i, _ALL])
        primary_at_breast = state.primary_details.years_at_breast_height
        cv = CompatibilityVariables()
        zero = UtilizationVector()

        basal_areas = bank.vector('basal_areas', i).copy()
        whole_stem = bank.vector('whole_stem_volumes', i).copy()
        close_util = bank.vector('close_utilization_volumes', i).copy()
        net_decay = bank.vector('cu_volumes_minus_decay', i).copy()
        net_waste = bank.vector('cu_volumes_minus_decay_and_waste', i).copy()
        diameters = bank.vector('quad_mean_diameters', i).copy()
        for uc, default in DEFAULT_QUAD_MEAN_DIAMETERS.items():
            if not diameters[uc] > 0:
                diameters[uc] = default

        # Volumes are estimated from the reconciled supplied bands, as during growth
        supplied_ba = basal_areas.copy()
        supplied_tph = UtilizationVector()
        supplied_dq = diameters.copy()
        has_bands = sum_utilization_components(supplied_ba) > 0
        if has_bands:
            reconcile_components(supplied_ba, supplied_tph, supplied_dq)

        actual_ws = bank.vector('whole_stem_volumes', i)
        actual_cu = bank.vector('close_utilization_volumes', i)
        actual_nd = bank.vector('cu_volumes_minus_decay', i)
        actual_nw = bank.vector('cu_volumes_minus_decay_and_waste', i)

        for uc in UTIL_CLASSES:
            base = actual_nd[uc]
            if base > V_BASE_MIN:
                self.estimators.estimate_net_decay_and_waste_volume(
                    genus, region, uc, zero, lorey_height, supplied_dq,
                    close_util, net_decay, net_waste,
                )
                cv.volume[VolumeVariable.CLOSE_UTIL_VOL_LESS_DECAY_LESS_WASTAGE][uc] = (
                    compatibility_logit(actual_nw[uc], base, net_waste[uc])
                )

            base = actual_cu[uc]
            if base > V_BASE_MIN:
                self.estimators.estimate_net_decay_volume(
                    genus, region, uc, zero, int(bank.decay_equation_groups[i]),
                    primary_at_breast, supplied_dq, close_util, net_decay,
                )
                cv.volume[VolumeVariable.CLOSE_UTIL_VOL_LESS_DECAY][uc] = (
                    compatibility_logit(actual_nd[uc], base, net_decay[uc])
                )

            base = actual_ws[uc]
            if base > V_BASE_MIN:
                self.estimators.estimate_close_utilization_volume(
                    uc, zero, int(bank.volume_equation_groups[i]), lorey_height,
                    supplied_dq, whole_stem, close_util,
                )
                cv.volume[VolumeVariable.CLOSE_UTIL_VOL][uc] = (
                    compatibility_logit(actual_cu[uc], base, close_util[uc])
                )

        if has_bands:
            self._estimate_whole_stem(
                int(bank.volume_equation_groups[i]), lorey_height, zero,
                supplied_tph, supplied_dq, supplied_ba, whole_stem,
            )
            for uc in UTIL_CLASSES:
                if supplied_ba[uc] > B_BASE_MIN:
                    cv.volume[VolumeVariable.WHOLE_STEM_VOL][uc] = whole_stem_compatibility(
                        actual_ws[uc], supplied_ba[uc], whole_stem[uc]
                    )

        growth_bec = bank.bec.growth_bec
        self.estimators.estimate_quad_mean_diameter_by_utilization(growth_bec, genus, diameters)
        self.estimators.estimate_basal_area_by_utilization(growth_bec, genus, diameters, basal_areas)

        densities = UtilizationVector()
        densities[ALL] = bank.trees_per_hectare[i, _ALL]
        for uc in UTIL_CLASSES:
            densities[uc] = trees_per_hectare(basal_areas[uc], diameters[uc])
        reconcile_components(basal_areas, densities, diameters)

        for uc in UTIL_CLASSES:
            cv.basal_area[uc] = bank.basal_areas[i, uc.position] - basal_areas[uc]
            original = bank.quad_mean_diameters[i, uc.position]
            adjusted = diameters[uc]
            if original < B_BASE_MIN:
                cv.quad_mean_diameter[uc] = 0.0
            elif original > 0 and adjusted > 0:
                cv.quad_mean_diameter[uc] = original - adjusted

        cv.small.update(self._small_component_compatibility(state, i))
        return cv

    def _small_component_compatibility(self, state: PolygonProcessingState, i: int):
        bank = state.bank
        estimate = self.estimators.estimate_small_components(
            bank.species_names[i], bank.bec.is_coastal,
            float(bank.lorey_heights[i, _ALL]), float(bank.quad_mean_diameters[i, _ALL]),
            float(bank.basal_areas[i, _ALL]), state.primary_details.years_at_breast_height,
        )

        small_ba = float(bank.basal_areas[i, _SMALL])
        small_dq = float(bank.quad_mean_diameters[i, _SMALL])
        small_hl = float(bank.lorey_heights[i, _SMALL])
        small_ws = float(bank.whole_stem_volumes[i, _SMALL])
        small_tph = float(bank.trees_per_hectare[i, _SMALL])

        result = {v: 0.0 for v in SmallUtilizationClassVariable}
        result[SmallUtilizationClassVariable.BASAL_AREA] = small_ba - estimate.basal_area
        if small_ba > B_BASE_MIN:
            result[SmallUtilizationClassVariable.QUAD_MEAN_DIAMETER] = (
                small_dq - estimate.quad_mean_diameter
            )
        if small_hl > BREAST_HEIGHT and estimate.lorey_height > BREAST_HEIGHT and small_ba > 0:
            result[SmallUtilizationClassVariable.LOREY_HEIGHT] = math.log(
                (small_hl - BREAST_HEIGHT) / (estimate.lorey_height - BREAST_HEIGHT)
            )
        if (small_ws > 0 and estimate.mean_volume > 0 and small_tph > 0
                and small_ba >= B_BASE_MIN):
            result[SmallUtilizationClassVariable.WHOLE_STEM_VOLUME] = math.log(
                small_ws / small_tph / estimate.mean_volume
            )
        return result

    # =========================================================================
    # Growth
    # =========================================================================

    def grow(self, state: PolygonProcessingState, year: int) -> GrowthResult:
        """Grow the primary layer from year to year + 1.

        The state's bank is read, not modified; the grown layer is returned
        in a new Bank.

        Raises:
            ProcessingError: If dominant height or basal area growth cannot be computed
        """
        logger.debug("Growing %s from %d", state.description, year)
        source = state.bank
        target = source.copy()
        if year > state.polygon.year and self.control.update_during_growth:
            self._set_coverages(target)
            self.calculate_dominant_height_age_site_index(state)

        details = state.primary_details
        primary = state.primary_index

        dominant_height_growth = self.grow_dominant_height(
            details.dominant_height, int(source.site_curve_numbers[primary]),
            details.site_index, details.years_to_breast_height, source.bec,
        )

        veteran_basal_area = None
        if state.veteran_bank is not None:
            veteran_basal_area = float(state.veteran_bank.basal_areas[0, _ALL])

        basal_area_growth = self.grow_basal_area(
            state.ranking, source.bec, details.years_at_breast_height, details.dominant_height,
            float(source.basal_areas[0, _ALL]), float(source.trees_per_hectare[0, _ALL]),
            veteran_basal_area, dominant_height_growth,
        )

        grown_details = details.grown(dominant_height_growth)
        self._apply_growth(state, target, grown_details, basal_area_growth)
        return GrowthResult(year + 1, target, dominant_height_growth, basal_area_growth)

    def grow_dominant_height(self, dominant_height: float, site_curve_number: int,
                             site_index: float, years_to_breast_height: float,
                             bec: BecDefinition) -> float:
        """One year of dominant height growth along the site curve.

        Past the curve's breast-height age limit, growth follows an extension
        that halves every t1 years and stops t2 years past the limit.

        Args:
            dominant_height: Current dominant height (m)
            site_curve_number: Site curve of the primary species
            site_index: Site index of the primary species
            years_to_breast_height: Years to breast height of the primary species
            bec: BEC zone, selecting the coastal or interior age limit

        Returns:
            Dominant height growth (m), never negative

        Raises:
            ProcessingError: If the curve is missing, the height is not above
                breast height, or the curve cannot be inverted
        """
        if site_curve_number == NO_CURVE:
            raise ProcessingError("No site curve number supplied")
        if dominant_height <= BREAST_HEIGHT:
            raise ProcessingError(
                f"Dominant height {dominant_height} is out of range (must be above {BREAST_HEIGHT})"
            )

        age_type = SiteIndexAgeType.AT_BREAST
        try:
            current_age = self.site_curves.age_from_height(
                site_curve_number, dominant_height, age_type, site_index, years_to_breast_height
            )
        except SiteCurveError as e:
            raise ProcessingError(
                f"Age from height failed on curve {site_curve_number} for height "
                f"{dominant_height} and site index {site_index}: {e}"
            ) from e

        if current_age <= 0.0:
            if dominant_height > site_index:
                return 0.0
            raise ProcessingError(f"Breast height age {current_age} must be positive")

        limits = self.tables.age_maximum(site_curve_number)
        age_limit = limits.age_maximum(bec.is_coastal)
        breast_height_age_limit = age_limit - years_to_breast_height if age_limit > 0 else 0.0

        def height(age: float) -> float:
            return self._height_from_age(
                site_curve_number, age, age_type, site_index, years_to_breast_height
            )

        if (breast_height_age_limit <= 0.0 or current_age <= breast_height_age_limit
                or limits.t1 <= 0.0):
            next_age = current_age + 1.0
            year_part = 1.0
            if limits.t1 <= 0.0 and 0.0 < breast_height_age_limit < next_age:
                if current_age > breast_height_age_limit:
                    return 0.0
                year_part = breast_height_age_limit - current_age + 0.01
                next_age = current_age + year_part

            # Inversion tolerance can be half a year on old stands; recompute the start height
            current_height = height(current_age)
            next_height = height(next_age)
            if next_height < 0.0:
                raise ProcessingError(
                    f"Height from age on curve {site_curve_number} returned {next_height}"
                )
            if next_height < current_height and year_part == 1.0:
                if abs(current_height - next_height) < 0.01:
                    return 0.0
                raise ProcessingError(
                    f"New dominant height {next_height} is less than the current "
                    f"dominant height {current_height}"
                )
            return next_height - current_height

        # Curve extension: Y = y - rate/a * (1 - exp(a*t)), t years past the limit
        limit_height = height(breast_height_age_limit)
        rate = max(height(breast_height_age_limit + 1.0) - limit_height, MIN_EXTENSION_RATE)
        a = math.log(0.5) / limits.t1

        if dominant_height > limit_height:
            term = 1.0 + (dominant_height - limit_height) * a / rate
            if term <= 1.0e-7:
                return 0.0
            t = math.log(term) / a
        else:
            t = 0.0

        if t > limits.t2:
            return 0.0
        return rate / a * (math.exp(a * (t + 1.0)) - math.exp(a * t))

    def _height_from_age(self, curve: int, age: float, age_type: SiteIndexAgeType,
                         site_index: float, years_to_breast_height: float) -> float:
        try:
            return self.site_curves.height_from_age(
                curve, age, age_type, site_index, years_to_breast_height
            )
        except SiteCurveError as e:
            raise ProcessingError(
                f"Height from age failed on curve {curve} at age {age}: {e}"
            ) from e

    def grow_basal_area(self, ranking: SpeciesRankingDetails, bec: BecDefinition,
                        years_at_breast_height: float, dominant_height: float,
                        layer_basal_area: float, layer_trees_per_hectare: float,
                        veteran_basal_area: Optional[float],
                        dominant_height_growth: float) -> float:
        """One year of basal area growth of the primary layer.

        The layer grows in proportion to the change in yield between the
        start and end of the year. Growth is limited by the group's basal
        area upper bound (at full occupancy, or the current basal area if
        already above it) and by the group's diameter upper bound at
        constant density.

        Returns:
            Basal area growth (m2/ha), never negative
        """
        bounds = self.estimators.upper_bounds(ranking.basal_area_group3)
        basal_area_upper = bounds.basal_area / EMPIRICAL_OCCUPANCY
        basal_area_limit = max(basal_area_upper, layer_basal_area)

        yield_start = self.estimators.estimate_basal_area_yield(
            bec.alias, ranking.basal_area_group1, dominant_height, years_at_breast_height,
            veteran_basal_area, True, bounds.basal_area,
        )
        yield_end = self.estimators.estimate_basal_area_yield(
            bec.alias, ranking.basal_area_group1, dominant_height + dominant_height_growth,
            years_at_breast_height + 1.0, veteran_basal_area, True, bounds.basal_area,
        )

        if yield_start > 0:
            growth = (yield_end - yield_start) * layer_basal_area / yield_start
        else:
            growth = yield_end - yield_start
        growth = max(min(growth, basal_area_limit - layer_basal_area), 0.0)

        if growth > 0 and layer_trees_per_hectare > 0:
            dq_start = quad_mean_diameter(layer_basal_area, layer_trees_per_hectare)
            dq_limit = max(bounds.quad_mean_diameter, dq_start)
            if quad_mean_diameter(layer_basal_area + growth, layer_trees_per_hectare) > dq_limit:
                growth = max(basal_area(dq_limit, layer_trees_per_hectare) - layer_basal_area, 0.0)
        return growth

    def _apply_growth(self, state: PolygonProcessingState, target: Bank,
                      details: PrimarySpeciesDetails, basal_area_growth: float) -> None:
        primary = state.primary_index
        primary_genus = target.species_names[primary]
        region = target.region.value
        rows = list(target.indices)

        total_before = float(target.basal_areas[0, _ALL])
        layer_tph = float(target.trees_per_hectare[0, _ALL])
        primary_tph = float(target.trees_per_hectare[primary, _ALL])

        # Basal area increment shared in proportion to basal area
        for i in rows:
            share = target.basal_areas[i, _ALL] / total_before
            target.basal_areas[i, _ALL] += basal_area_growth * share
        total_after = total_before + basal_area_growth
        layer_dq = quad_mean_diameter(total_after, layer_tph)

        primary_height = self.estimators.primary_height_from_lead_height(
            details.dominant_height, primary_genus, region, primary_tph
        )
        for i in rows:
            if i == primary:
                target.lorey_heights[i, _ALL] = primary_height
            else:
                target.lorey_heights[i, _ALL] = self.estimators.estimate_nonprimary_lorey_height(
                    target.species_names[i], primary_genus, region,
                    details.dominant_height, primary_height,
                )
        layer_height = sum(
            target.lorey_heights[i, _ALL] * target.basal_areas[i, _ALL] for i in rows
        ) / total_after

        if len(rows) == 1:
            diameters = {rows[0]: layer_dq}
        else:
            fractions = {
                target.species_names[i]: target.basal_areas[i, _ALL] / total_after for i in rows
            }
            diameters = {
                i: self.estimators.estimate_quad_mean_diameter_for_species(
                    target.species_names[i], fractions, region,
                    float(target.lorey_heights[i, _ALL]), layer_dq, total_after,
                    layer_tph, layer_height,
                )
                for i in rows
            }

        # The layer density is carried into the species diameters; band
        # reconciliation then sets each species density to the sum of its bands
        densities = {i: trees_per_hectare(target.basal_areas[i, _ALL], diameters[i]) for i in rows}
        density_total = sum(densities.values())
        scale = layer_tph / density_total if density_total > 0 else 1.0
        for i in rows:
            target.trees_per_hectare[i, _ALL] = densities[i] * scale
            target.quad_mean_diameters[i, _ALL] = quad_mean_diameter(
                target.basal_areas[i, _ALL], target.trees_per_hectare[i, _ALL]
            )

        for i in rows:
            self.estimate_species_components(state, target, i, details.years_at_breast_height)

        for array in (target.age_totals, target.years_at_breast_height):
            array[1:] = array[1:] + 1.0
        target.dominant_heights[primary] = details.dominant_height
        target.set_stand_totals()

    def estimate_species_components(self, state: PolygonProcessingState, target: Bank, i: int,
                                    primary_years_at_breast_height: float) -> None:
        """Rebuild species i's utilization vectors from its ALL values.

        Band diameters, basal areas and volumes are estimated with species i's
        compatibility variables applied, so a bank holding the supplied
        values gets its supplied bands back. The ALL density and diameter
        are re-derived from the reconciled bands.

        Args:
            state: Processing state holding the compatibility variables
            target: Bank to update in place
            i: Species index in target
            primary_years_at_breast_height: Breast height age of the primary species
        """
        genus = target.species_names[i]
        region = target.region.value
        growth_bec = target.bec.growth_bec
        cv = state.compatibility_variables(i)
        lorey_height = float(target.lorey_heights[i, _ALL])

        ba = target.vector('basal_areas', i)
        tph = target.vector('trees_per_hectare', i)
        dq = target.vector('quad_mean_diameters', i)
        hl = target.vector('lorey_heights', i)
        ws = target.vector('whole_stem_volumes', i)
        cu = target.vector('close_utilization_volumes', i)
        nd = target.vector('cu_volumes_minus_decay', i)
        nw = target.vector('cu_volumes_minus_decay_and_waste', i)
        nb = target.vector('cu_volumes_minus_decay_waste_and_breakage', i)

        if not ba[ALL] > 0:
            for vector in (ba, tph, ws, cu, nd, nw, nb):
                vector.fill(0.0)
            return

        self.estimators.estimate_quad_mean_diameter_by_utilization(growth_bec, genus, dq)
        for uc in UTIL_CLASSES:
            dq[uc] = min(max(dq[uc] + cv.quad_mean_diameter[uc], uc.low_bound), uc.high_bound)

        self.estimators.estimate_basal_area_by_utilization(growth_bec, genus, dq, ba)
        for uc in UTIL_CLASSES:
            ba[uc] = max(ba[uc] + cv.basal_area[uc], 0.0)
            tph[uc] = trees_per_hectare(ba[uc], dq[uc])
        reconcile_components(ba, tph, dq)

        self._estimate_small_component(target, i, cv, primary_years_at_breast_height)

        volume_group = int(target.volume_equation_groups[i])
        self._estimate_whole_stem(
            volume_group, lorey_height, cv.volume[VolumeVariable.WHOLE_STEM_VOL], tph, dq, ba, ws
        )
        self.estimators.estimate_close_utilization_volume(
            ALL, cv.volume[VolumeVariable.CLOSE_UTIL_VOL], volume_group, lorey_height, dq, ws, cu
        )
        self.estimators.estimate_net_decay_volume(
            genus, region, ALL, cv.volume[VolumeVariable.CLOSE_UTIL_VOL_LESS_DECAY],
            int(target.decay_equation_groups[i]), primary_years_at_breast_height, dq, cu, nd,
        )
        self.estimators.estimate_net_decay_and_waste_volume(
            genus, region, ALL, cv.volume[VolumeVariable.CLOSE_UTIL_VOL_LESS_DECAY_LESS_WASTAGE],
            lorey_height, dq, cu, nd, nw,
        )
        self.estimators.estimate_net_decay_waste_and_breakage_volume(
            ALL, int(target.breakage_equation_groups[i]), dq, cu, nw, nb
        )
        hl[ALL] = lorey_height

    def _estimate_whole_stem(self, volume_group: int, lorey_height: float,
                             adjust: UtilizationVector, densities: UtilizationVector,
                             diameters: UtilizationVector, basal_areas: UtilizationVector,
                             whole_stem: UtilizationVector) -> None:
        """Whole stem volume by band, offset by the whole stem compatibility variables.

        EMP090 gives the model total and EMP091 splits it across the bands.
        Each band is then scaled by exp(adjust) and the adjusted bands are
        summed into ALL, so the offsets carry through to the total.
        """
        whole_stem[ALL] = densities[ALL] * self.estimators.estimate_whole_stem_volume_per_tree(
            volume_group, lorey_height, diameters[ALL]
        )
        self.estimators.estimate_whole_stem_volume(
            ALL, UtilizationVector(), volume_group, lorey_height, diameters, basal_areas,
            whole_stem,
        )
        for uc in UTIL_CLASSES:
            whole_stem[uc] = whole_stem[uc] * math.exp(adjust[uc])
        store_sum_utilization_components(whole_stem)

    def _estimate_small_component(self, target: Bank, i: int, cv: CompatibilityVariables,
                                  primary_years_at_breast_height: float) -> None:
        estimate = self.estimators.estimate_small_components(
            target.species_names[i], target.bec.is_coastal,
            float(target.lorey_heights[i, _ALL]), float(target.quad_mean_diameters[i, _ALL]),
            float(target.basal_areas[i, _ALL]), primary_years_at_breast_height,
        )
        small = cv.small
        small_ba = max(estimate.basal_area + small[SmallUtilizationClassVariable.BASAL_AREA], 0.0)

        for attribute in ('close_utilization_volumes', 'cu_volumes_minus_decay',
                          'cu_volumes_minus_decay_and_waste',
                          'cu_volumes_minus_decay_waste_and_breakage'):
            getattr(target, attribute)[i, _SMALL] = 0.0

        if small_ba > 0:
            small_dq = min(max(
                estimate.quad_mean_diameter + small[SmallUtilizationClassVariable.QUAD_MEAN_DIAMETER],
                SMALL_DQ_MIN,
            ), SMALL_DQ_MAX)
            small_hl = BREAST_HEIGHT + (estimate.lorey_height - BREAST_HEIGHT) * math.exp(
                small[SmallUtilizationClassVariable.LOREY_HEIGHT]
            )
            small_tph = small_ba / (PI_40K * small_dq * small_dq)
            small_ws = small_tph * estimate.mean_volume * math.exp(
                small[SmallUtilizationClassVariable.WHOLE_STEM_VOLUME]
            )
        else:
            small_dq = small_hl = small_tph = small_ws = 0.0

        target.basal_areas[i, _SMALL] = small_ba
        target.quad_mean_diameters[i, _SMALL] = small_dq
        target.lorey_heights[i, _SMALL] = small_hl
        target.trees_per_hectare[i, _SMALL] = small_tph
        target.whole_stem_volumes[i, _SMALL] = small_ws
