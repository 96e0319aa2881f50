"""
Reconciliation of basal area, density and diameter by utilization class.

After basal area and diameter have been estimated per band, the bands are
made consistent with each other and with the ALL value:

- band basal areas are rescaled so they sum to basal area[ALL]
- each band DQ is held within its class diameter bounds
- band densities follow from BA = pi/40000 * DQ**2 * TPH
- density[ALL] is the band sum and DQ[ALL] follows from BA and density
"""
import math

from .exceptions import ProcessingError
from .utilization import (
    UTIL_CLASSES,
    UtilizationClass,
    UtilizationVector,
    quad_mean_diameter,
    sum_utilization_components,
    trees_per_hectare,
)

__all__ = ['reconcile_components']

ALL = UtilizationClass.ALL


def reconcile_components(basal_areas: UtilizationVector, trees_per_hectare_: UtilizationVector,
                         quad_mean_diameters: UtilizationVector) -> None:
    """Make band basal areas, densities and diameters mutually consistent.

    The vectors are updated in place.

    Raises:
        ProcessingError: If basal area[ALL] is positive but no band carries any
    """
    total = basal_areas[ALL]
    if not total > 0:
        for uc in UTIL_CLASSES:
            basal_areas[uc] = 0.0
            trees_per_hectare_[uc] = 0.0
        basal_areas[ALL] = 0.0
        trees_per_hectare_[ALL] = 0.0
        return

    for uc in UTIL_CLASSES:
        if basal_areas[uc] < 0 or math.isnan(basal_areas[uc]):
            basal_areas[uc] = 0.0

    band_total = sum_utilization_components(basal_areas)
    if not band_total > 0:
        raise ProcessingError(
            f"Basal area {total} cannot be distributed: no utilization band has basal area"
        )
    factor = total / band_total
    for uc in UTIL_CLASSES:
        basal_areas[uc] = basal_areas[uc] * factor

    for uc in UTIL_CLASSES:
        dq = quad_mean_diameters[uc]
        if math.isnan(dq) or dq <= 0:
            dq = (uc.low_bound + min(uc.high_bound, uc.low_bound + 5.0)) / 2.0
        quad_mean_diameters[uc] = min(max(dq, uc.low_bound), uc.high_bound)
        if basal_areas[uc] > 0:
            trees_per_hectare_[uc] = trees_per_hectare(basal_areas[uc], quad_mean_diameters[uc])
        else:
            trees_per_hectare_[uc] = 0.0

    trees_per_hectare_[ALL] = sum_utilization_components(trees_per_hectare_)
    quad_mean_diameters[ALL] = quad_mean_diameter(basal_areas[ALL], trees_per_hectare_[ALL])
