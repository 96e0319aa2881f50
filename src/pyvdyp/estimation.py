"""
Empirical estimation equations.

EstimationMethods wraps the coefficient tables and provides the regression
equations used to decompose a species' stand-level values into utilization
classes and to move between heights, diameters, basal areas and volumes.
Equation numbers follow the published VDYP documentation:

    EMP050  lorey height <-> dominant height (height multiplier)
    EMP051  initial primary species lorey height
    EMP053  non-primary species lorey height
    EMP060  species quadratic mean diameter from the stand value
    EMP061  species size limits
    EMP070  basal area by utilization class
    EMP071  quadratic mean diameter by utilization class
    EMP080  small component probability
    EMP081  small component conditional expected basal area
    EMP082  small component quadratic mean diameter
    EMP085  small component lorey height
    EMP086  small component mean volume
    EMP090  whole stem volume per tree
    EMP091  whole stem volume by utilization class
    EMP092  close utilization volume
    EMP093  close utilization volume net of decay
    EMP094  ... net of decay and waste
    EMP095  ... net of decay, waste and breakage
    EMP106  basal area yield

Utilization-class methods write their results into the output vector in
place. When called for UtilizationClass.ALL they fill all four bands and
then store their sum (or, for whole stem volume, rescale the bands to the
known total).
"""
import math
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .coefficients import CoefficientTables, ComponentSizeLimits, UpperBounds
from .exceptions import ProcessingError
from .logging_config import get_logger
from .species import GenusCode
from .utilization import (
    BANDS_BUT_LARGEST,
    UTIL_CLASSES,
    UtilizationClass,
    UtilizationVector,
    normalize_utilization_components,
    quad_mean_diameter,
    store_sum_utilization_components,
    trees_per_hectare,
)

__all__ = [
    'EMPIRICAL_OCCUPANCY',
    'EXP_OVERFLOW_LIMIT',
    'safe_exponent',
    'exponent_ratio',
    'ratio',
    'SmallComponentEstimate',
    'EstimationMethods',
]

logger = get_logger(__name__)

# Fraction of full site occupancy reached by real stands
EMPIRICAL_OCCUPANCY = 0.85

# exp() of anything larger overflows single precision
EXP_OVERFLOW_LIMIT = 88.0

# Basal area factor used by the EMP060 density split
_EMP060_C = 0.00441786467

# Species DQ never has to fall below this (cm)
_EMP060_MIN_DQ = 7.6

ALL = UtilizationClass.ALL


def safe_exponent(logit: float) -> float:
    """exp(logit), rejecting arguments that would overflow.

    Raises:
        ProcessingError: If logit exceeds EXP_OVERFLOW_LIMIT
    """
    if logit > EXP_OVERFLOW_LIMIT:
        raise ProcessingError(f"logit {logit} exceeds {EXP_OVERFLOW_LIMIT}")
    return math.exp(logit)


def exponent_ratio(logit: float) -> float:
    """Logistic transform exp(x) / (1 + exp(x)) with an overflow guard."""
    value = safe_exponent(logit)
    return value / (1.0 + value)


def ratio(arg: float, radius: float) -> float:
    """Logistic transform saturating to 0 or 1 outside [-radius, radius]."""
    if arg < -radius:
        return 0.0
    if arg > radius:
        return 1.0
    value = math.exp(arg)
    return value / (1.0 + value)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class SmallComponentEstimate:
    """Model estimates for the small (< 7.5 cm) component of a species.

    Attributes:
        probability: Probability that the small component is present (EMP080)
        conditional_basal_area: Expected basal area when present (EMP081)
        quad_mean_diameter: Small component DQ (EMP082)
        lorey_height: Small component lorey height (EMP085)
        mean_volume: Mean whole stem volume per small tree (EMP086)
    """
    probability: float
    conditional_basal_area: float
    quad_mean_diameter: float
    lorey_height: float
    mean_volume: float

    @property
    def basal_area(self) -> float:
        return self.probability * self.conditional_basal_area


class EstimationMethods:
    """Regression equations evaluated against a set of coefficient tables.

    Attributes:
        tables: The coefficient tables
    """

    def __init__(self, tables: CoefficientTables):
        self.tables = tables

    # =========================================================================
    # Heights (EMP050, EMP051, EMP053)
    # =========================================================================

    def _height_multiplier(self, genus: str, region: str, trees_per_hectare_primary: float) -> float:
        a0, a1, a2 = self.tables.hl_primary_p1.lookup(genus, region)
        return a0 - a1 + a1 * math.exp(a2 * (trees_per_hectare_primary - 100.0))

    def primary_height_from_lead_height(self, lead_height: float, genus: str, region: str,
                                        trees_per_hectare_primary: float) -> float:
        """EMP050 method 1: primary species lorey height from lead dominant height."""
        return 1.3 + (lead_height - 1.3) * self._height_multiplier(
            genus, region, trees_per_hectare_primary
        )

    def lead_height_from_primary_height(self, primary_height: float, genus: str, region: str,
                                        trees_per_hectare_primary: float) -> float:
        """EMP050 method 2: lead dominant height from primary species lorey height."""
        return 1.3 + (primary_height - 1.3) / self._height_multiplier(
            genus, region, trees_per_hectare_primary
        )

    def primary_height_from_lead_height_initial(self, lead_height: float, genus: str,
                                                region: str) -> float:
        """EMP051: primary species lorey height when density is not yet known."""
        a1, a2 = self.tables.hl_primary_p2.lookup(genus, region)
        return 1.3 + a1 * (lead_height - 1.3) ** a2

    def estimate_nonprimary_lorey_height(self, genus: str, primary_genus: str, region: str,
                                         lead_height: float, primary_height: float) -> float:
        """EMP053: lorey height of a non-primary species of the primary layer."""
        coe = self.tables.hl_nonprimary.lookup(genus, primary_genus, region)
        height = lead_height if coe.equation_index == 1 else primary_height
        return 1.3 + coe.a1 * (height - 1.3) ** coe.a2

    # =========================================================================
    # Species diameter (EMP060, EMP061)
    # =========================================================================

    def size_limits(self, genus: str, region: str) -> ComponentSizeLimits:
        """EMP061: size limits of a genus in a region."""
        return self.tables.component_size_limits.lookup(genus, region)

    def estimate_quad_mean_diameter_for_species(
            self, genus: str, fractions: Mapping[str, float], region: str,
            lorey_height: float, stand_quad_mean_diameter: float, stand_basal_area: float,
            stand_trees_per_hectare: float, stand_lorey_height: float) -> float:
        """EMP060: quadratic mean diameter of one species within the stand.

        The stand's density is split between the species and the rest of the
        stand so that both parts honour the stand basal area, then the
        species diameter is held within its EMP061 limits.

        Args:
            genus: Genus of the species of interest
            fractions: Basal area fraction by genus for every species of the layer
            region: Region value
            lorey_height: Lorey height of the species
            stand_quad_mean_diameter: DQ of the stand
            stand_basal_area: Basal area of the stand
            stand_trees_per_hectare: Density of the stand
            stand_lorey_height: Lorey height of the stand

        Raises:
            ProcessingError: If the density split has no valid solution
        """
        fraction = fractions[genus]
        min_dq = min(_EMP060_MIN_DQ, stand_quad_mean_diameter)
        if fraction >= 1.0:
            return stand_quad_mean_diameter

        fraction_other = 1.0 - fraction
        genera = [g.value for g in GenusCode]
        first = self.tables.by_species_dq.lookup(genera[0])
        a0, a1, a2 = first[0], first[1], first[2]
        for other in genera[1:]:
            coe = self.tables.by_species_dq.lookup(other)
            if other == genus:
                mult = 1.0
            elif fractions.get(other, 0.0) > 0:
                mult = -fractions[other] / fraction_other
            else:
                continue
            a0 += mult * coe[0]
            a1 += mult * coe[1]

        height1 = max(4.0, lorey_height)
        height2 = (stand_lorey_height - lorey_height * fraction) / fraction_other
        height_ratio = _clamp((height1 - 3.0) / (height2 - 3.0), 0.05, 20.0)
        r = math.exp(a0 + a1 * math.log(height_ratio) + a2 * math.log(stand_quad_mean_diameter))

        basal_area1 = fraction * stand_basal_area
        basal_area2 = stand_basal_area - basal_area1

        if abs(r - 1.0) < 0.0005:
            tph1 = fraction * stand_trees_per_hectare
        else:
            aa = (r - 1.0) * _EMP060_C
            bb = _EMP060_C * (1.0 - r) * stand_trees_per_hectare + basal_area1 + basal_area2 * r
            cc = -basal_area1 * stand_trees_per_hectare
            term = bb * bb - 4.0 * aa * cc
            if term <= 0:
                raise ProcessingError(
                    f"Density term {term} for species {genus} quadratic mean diameter "
                    "should be positive"
                )
            tph1 = (-bb + math.sqrt(term)) / (2.0 * aa)
            if tph1 <= 0 or tph1 > stand_trees_per_hectare:
                raise ProcessingError(
                    f"Density {tph1} for species {genus} should be positive and at most "
                    f"the stand density {stand_trees_per_hectare}"
                )

        dq1 = quad_mean_diameter(basal_area1, tph1)
        tph2 = stand_trees_per_hectare - tph1
        dq2 = quad_mean_diameter(basal_area2, tph2)
        limits = self.size_limits(genus, region)
        return self._clamp_species_quad_mean_diameter(
            limits, stand_trees_per_hectare, min_dq, lorey_height,
            basal_area1, basal_area2, dq1, dq2,
        )

    @staticmethod
    def _clamp_species_quad_mean_diameter(limits: ComponentSizeLimits, stand_tph: float,
                                          min_dq: float, lorey_height: float,
                                          basal_area1: float, basal_area2: float,
                                          dq1: float, dq2: float) -> float:
        if dq2 < min_dq:
            # The rest of the stand is too small; shrink the species
            tph2 = trees_per_hectare(basal_area2, min_dq)
            dq1 = quad_mean_diameter(basal_area1, stand_tph - tph2)

        dq_min = max(min_dq, limits.min_quad_mean_diameter_to_lorey_height_ratio * lorey_height)
        dq_max = max(
            _EMP060_MIN_DQ,
            min(limits.max_quad_mean_diameter,
                limits.max_quad_mean_diameter_to_lorey_height_ratio * lorey_height),
        )
        if dq1 < dq_min:
            dq1 = dq_min
        if dq1 > dq_max:
            dq1 = dq_max
            tph2 = stand_tph - trees_per_hectare(basal_area1, dq1)
            if tph2 > 0 and basal_area2 > 0:
                dq2 = quad_mean_diameter(basal_area2, tph2)
            else:
                dq2 = 1000.0
            if dq2 < min_dq:
                # Rarely the species must exceed its maximum
                tph2 = trees_per_hectare(basal_area2, min_dq)
                dq1 = quad_mean_diameter(basal_area1, stand_tph - tph2)
        return dq1

    # =========================================================================
    # Basal area and diameter by utilization class (EMP070, EMP071)
    # =========================================================================

    def estimate_basal_area_by_utilization(self, bec_alias: str, genus: str,
                                           quad_mean_diameters: UtilizationVector,
                                           basal_areas: UtilizationVector) -> None:
        """EMP070: split basal area[ALL] across the four bands.

        Each band's share is the logistic fraction of the basal area above
        its lower bound that also lies above its upper bound. Requires the
        band DQs from EMP071.
        """
        dq = quad_mean_diameters[ALL]
        above = UtilizationVector()
        above[ALL] = basal_areas[ALL]

        for uc in BANDS_BUT_LARGEST:
            a0, a1 = self.tables.basal_area_by_util.lookup(uc.index, genus, bec_alias)[:2]
            if uc is UtilizationClass.U75TO125:
                logit = a0 + a1 * dq ** 0.25
            else:
                logit = a0 + a1 * dq
            above[uc] = above[uc.previous()] * exponent_ratio(logit)
            if uc is UtilizationClass.U75TO125 and dq < 12.5:
                ba12_max = (1.0 - ((quad_mean_diameters[uc] - 7.4) / (dq - 7.4)) ** 2) * above[ALL]
                above[uc] = min(above[uc], ba12_max)

        basal_areas[UtilizationClass.U75TO125] = basal_areas[ALL] - above[UtilizationClass.U75TO125]
        basal_areas[UtilizationClass.U125TO175] = (
            above[UtilizationClass.U75TO125] - above[UtilizationClass.U125TO175]
        )
        basal_areas[UtilizationClass.U175TO225] = (
            above[UtilizationClass.U125TO175] - above[UtilizationClass.U175TO225]
        )
        basal_areas[UtilizationClass.OVER225] = above[UtilizationClass.U175TO225]

    def estimate_quad_mean_diameter_by_utilization(self, bec_alias: str, genus: str,
                                                   quad_mean_diameters: UtilizationVector) -> None:
        """EMP071: estimate each band's DQ from DQ[ALL]."""
        dq07 = quad_mean_diameters[ALL]

        for uc in UTIL_CLASSES:
            coe = self.tables.dq_by_util.lookup(uc.index, genus, bec_alias)
            a0, a1, a2 = coe[0], coe[1], coe[2]

            if uc is UtilizationClass.U75TO125:
                if dq07 < 7.5001:
                    quad_mean_diameters[uc] = 7.5
                else:
                    logit = a1 / a0 * (dq07 - 7.5)
                    quad_mean_diameters[uc] = min(
                        7.5 + a0 * (1.0 - safe_exponent(logit)) ** a2, dq07
                    )
            elif uc is UtilizationClass.OVER225:
                a3 = coe[3]
                logit = a2 + a1 * dq07 ** a3
                quad_mean_diameters[uc] = max(22.5, dq07 + a0 * (1.0 - exponent_ratio(logit)))
            else:
                logit = a0 + a1 * (dq07 / 7.5) ** a2
                quad_mean_diameters[uc] = uc.low_bound + 5.0 * exponent_ratio(logit)

        logger.debug("Estimated band diameters for %s: %s", genus, quad_mean_diameters)

    # =========================================================================
    # Small component (EMP080 - EMP086)
    # =========================================================================

    def estimate_small_components(self, genus: str, coastal: bool, lorey_height: float,
                                  quad_mean_diameter_all: float, basal_area_all: float,
                                  primary_years_at_breast_height: float) -> SmallComponentEstimate:
        """Estimate the small component of a species from its >= 7.5 cm values."""
        # EMP080
        a0, a1, a2, a3 = self.tables.small_component_probability.lookup(genus)
        logit = a0 + (a1 if coastal else 0.0) + a2 * primary_years_at_breast_height + a3 * lorey_height
        probability = exponent_ratio(logit)

        # EMP081; the coastal term is never applied
        a0, a1, a2, a3 = self.tables.small_component_basal_area.lookup(genus)
        conditional_basal_area = max((a0 + a2 * basal_area_all) * math.exp(a3 * lorey_height), 0.0)

        # EMP082
        a0, a1 = self.tables.small_component_dq.lookup(genus)
        dq_small = 4.0 + 3.5 * exponent_ratio(a0 + a1 * lorey_height)

        # EMP085
        a0, a1 = self.tables.small_component_lorey_height.lookup(genus)
        hl_small = 1.3 + (lorey_height - 1.3) * math.exp(
            a0 * (dq_small ** a1 - quad_mean_diameter_all ** a1)
        )

        # EMP086
        a0, a1, a2, a3 = self.tables.small_component_whole_stem_volume.lookup(genus)
        mean_volume = math.exp(
            a0 + a1 * math.log(dq_small) + a2 * math.log(hl_small) + a3 * dq_small
        )

        return SmallComponentEstimate(
            probability=probability,
            conditional_basal_area=conditional_basal_area,
            quad_mean_diameter=dq_small,
            lorey_height=hl_small,
            mean_volume=mean_volume,
        )

    # =========================================================================
    # Volume chain (EMP090 - EMP095)
    # =========================================================================

    @staticmethod
    def _estimate_utilization(source: UtilizationVector, target: UtilizationVector,
                              utilization_class: UtilizationClass,
                              processor: Callable[[UtilizationClass, float], float],
                              skip: Optional[Callable[[float], bool]] = None,
                              default: float = 0.0) -> None:
        for uc in UTIL_CLASSES:
            value = source[uc]
            if skip is not None and skip(value):
                target[uc] = default
                continue
            if utilization_class is not ALL and utilization_class is not uc:
                continue
            target[uc] = processor(uc, value)

    def estimate_whole_stem_volume_per_tree(self, volume_group: int, lorey_height: float,
                                            quad_mean_diameter: float) -> float:
        """EMP090: mean whole stem volume (m3) per tree."""
        c = self.tables.total_stand_whole_stem_volume.lookup(volume_group)
        dq, hl = quad_mean_diameter, lorey_height
        log_volume = (
            c[0] + c[1] * math.log(dq) + c[2] * math.log(hl) + c[3] * dq + c[4] / dq
            + c[5] * hl + c[6] * dq * dq + c[7] * hl * dq + c[8] * hl / dq
        )
        return math.exp(log_volume)

    def estimate_whole_stem_volume(self, utilization_class: UtilizationClass,
                                   adjust: UtilizationVector, volume_group: int,
                                   lorey_height: float, quad_mean_diameters: UtilizationVector,
                                   basal_areas: UtilizationVector,
                                   whole_stem_volumes: UtilizationVector) -> None:
        """EMP091: whole stem volume by band.

        For ALL, the bands are rescaled to whole_stem_volumes[ALL], which must
        already hold the total.

        Raises:
            ProcessingError: If the estimated bands sum to zero or less
        """
        dq_species = quad_mean_diameters[ALL]

        def whole_stem(uc: UtilizationClass, basal_area: float) -> float:
            a0, a1, a2, a3 = self.tables.whole_stem_volume_by_util.lookup(uc.index, volume_group)
            arg = a0 + a1 * math.log(lorey_height) + a2 * math.log(quad_mean_diameters[uc])
            if uc is UtilizationClass.OVER225:
                arg += a3 * dq_species
            else:
                arg += a3 * math.log(dq_species)
            arg += adjust[uc]
            return basal_area * math.exp(arg)

        self._estimate_utilization(
            basal_areas, whole_stem_volumes, utilization_class, whole_stem,
            skip=lambda ba: ba <= 0,
        )
        if utilization_class is ALL:
            normalize_utilization_components(whole_stem_volumes)

    def estimate_close_utilization_volume(self, utilization_class: UtilizationClass,
                                          adjust: UtilizationVector, volume_group: int,
                                          lorey_height: float,
                                          quad_mean_diameters: UtilizationVector,
                                          whole_stem_volumes: UtilizationVector,
                                          close_utilization_volumes: UtilizationVector) -> None:
        """EMP092: close utilization volume as a fraction of whole stem volume."""
        def close_utilization(uc: UtilizationClass, whole_stem: float) -> float:
            a0, a1, a2 = self.tables.close_utilization_volume.lookup(uc.index, volume_group)
            arg = a0 + a1 * quad_mean_diameters[uc] + a2 * lorey_height + adjust[uc]
            return whole_stem * ratio(arg, 7.0)

        self._estimate_utilization(
            whole_stem_volumes, close_utilization_volumes, utilization_class, close_utilization
        )
        if utilization_class is ALL:
            store_sum_utilization_components(close_utilization_volumes)

    def estimate_net_decay_volume(self, genus: str, region: str,
                                  utilization_class: UtilizationClass, adjust: UtilizationVector,
                                  decay_group: int, years_at_breast_height: float,
                                  quad_mean_diameters: UtilizationVector,
                                  close_utilization_volumes: UtilizationVector,
                                  net_decay_volumes: UtilizationVector) -> None:
        """EMP093: close utilization volume net of decay."""
        dq_species = quad_mean_diameters[ALL]
        age_term = math.log(max(20.0, years_at_breast_height))
        modifier = self.tables.decay_modifier(genus, region)

        def net_decay(uc: UtilizationClass, close_utilization: float) -> float:
            a0, a1, a2 = self.tables.net_decay.lookup(uc.index, decay_group)
            dq = quad_mean_diameters[uc] if uc is UtilizationClass.OVER225 else dq_species
            arg = a0 + a1 * math.log(dq) + a2 * age_term + adjust[uc] + modifier
            return close_utilization * ratio(arg, 8.0)

        self._estimate_utilization(
            close_utilization_volumes, net_decay_volumes, utilization_class, net_decay
        )
        if utilization_class is ALL:
            store_sum_utilization_components(net_decay_volumes)

    def estimate_net_decay_and_waste_volume(self, genus: str, region: str,
                                            utilization_class: UtilizationClass,
                                            adjust: UtilizationVector, lorey_height: float,
                                            quad_mean_diameters: UtilizationVector,
                                            close_utilization_volumes: UtilizationVector,
                                            net_decay_volumes: UtilizationVector,
                                            net_decay_waste_volumes: UtilizationVector) -> None:
        """EMP094: close utilization volume net of decay and waste."""
        coe = self.tables.net_decay_waste.lookup(genus)
        modifier = self.tables.waste_modifier(genus, region)

        def net_waste(uc: UtilizationClass, net_decay: float) -> float:
            if math.isnan(net_decay) or net_decay <= 0:
                return 0.0
            a0, a1, a2, a3, a4, a5 = coe
            if uc is UtilizationClass.OVER225:
                a0 += a5
            close_utilization = close_utilization_volumes[uc]
            frd = 1.0 - net_decay / close_utilization

            arg = a0 + a1 * frd + a3 * math.log(quad_mean_diameters[uc]) + a4 * math.log(lorey_height)
            arg = _clamp(arg + modifier, -10.0, 10.0)
            frw = (1.0 - math.exp(a2 * frd)) * math.exp(arg) / (1.0 + math.exp(arg)) * (1.0 - frd)
            frw = min(frd, frw)
            result = close_utilization * (1.0 - frd - frw)

            # Adjustments apply after frw is limited to frd
            if adjust[uc] != 0:
                fraction = result / net_decay
                if 0 < fraction < 1:
                    arg = _clamp(math.log(fraction / (1.0 - fraction)) + adjust[uc], -10.0, 10.0)
                    result = math.exp(arg) / (1.0 + math.exp(arg)) * net_decay
            return result

        self._estimate_utilization(
            net_decay_volumes, net_decay_waste_volumes, utilization_class, net_waste
        )
        if utilization_class is ALL:
            store_sum_utilization_components(net_decay_waste_volumes)

    def estimate_net_decay_waste_and_breakage_volume(
            self, utilization_class: UtilizationClass, breakage_group: int,
            quad_mean_diameters: UtilizationVector, close_utilization_volumes: UtilizationVector,
            net_decay_waste_volumes: UtilizationVector,
            net_decay_waste_breakage_volumes: UtilizationVector) -> None:
        """EMP095: close utilization volume net of decay, waste and breakage."""
        a1, a2, a3, a4 = self.tables.net_breakage.lookup(breakage_group)

        def net_breakage(uc: UtilizationClass, net_waste: float) -> float:
            if net_waste <= 0:
                return 0.0
            percent_broken = _clamp(a1 + a2 * math.log(quad_mean_diameters[uc]), a3, a4)
            broken = min(percent_broken / 100.0 * close_utilization_volumes[uc], net_waste)
            return net_waste - broken

        self._estimate_utilization(
            net_decay_waste_volumes, net_decay_waste_breakage_volumes, utilization_class, net_breakage
        )
        if utilization_class is ALL:
            store_sum_utilization_components(net_decay_waste_breakage_volumes)

    # =========================================================================
    # Yield (EMP106)
    # =========================================================================

    def upper_bounds(self, basal_area_group: int) -> UpperBounds:
        return self.tables.upper_bounds.lookup(basal_area_group)

    def estimate_basal_area_yield(self, bec_alias: str, basal_area_group: int,
                                  dominant_height: float, years_at_breast_height: float,
                                  veteran_basal_area: Optional[float], full_occupancy: bool,
                                  basal_area_upper_bound: float) -> float:
        """EMP106: basal area (m2/ha) a stand of this height and age carries.

        Args:
            bec_alias: BEC zone whose coefficients apply
            basal_area_group: Basal area equation group of the layer
            dominant_height: Dominant height of the lead species (m)
            years_at_breast_height: Breast height age of the lead species
            veteran_basal_area: Basal area of the veteran layer, if any
            full_occupancy: Express the yield at full rather than empirical occupancy
            basal_area_upper_bound: Yield is never above this bound

        Raises:
            ProcessingError: If the breast height age is not positive
        """
        if not years_at_breast_height > 0:
            raise ProcessingError(
                f"Breast height age {years_at_breast_height} must be positive for basal area yield"
            )
        c = self.tables.basal_area_yield.lookup(bec_alias, basal_area_group)
        age_term = math.log(years_at_breast_height)

        a00 = max(c[0] + c[1] * age_term, 0.0)
        ap = max(c[3] + c[4] * age_term, 0.0)

        if dominant_height <= c[2]:
            basal_area = 0.0
        else:
            veteran = veteran_basal_area or 0.0
            basal_area = a00 * (dominant_height - c[2]) ** ap * math.exp(
                c[5] * dominant_height + c[6] * veteran
            )
            basal_area = min(basal_area, basal_area_upper_bound)

        if full_occupancy:
            basal_area /= EMPIRICAL_OCCUPANCY
        return basal_area
