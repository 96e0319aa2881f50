"""
Output of a forward projection.

The engine hands the primary layer to an OutputSink at the starting year
and after every grown year. GrowthTrajectory is a sink that keeps one row
per (year, species, utilization class) and exposes them as a pandas
DataFrame.
"""
from typing import Any, Dict, List, Protocol

import pandas as pd

from .bank import Bank
from .model import Polygon
from .utilization import UtilizationClass

__all__ = ['OutputSink', 'GrowthTrajectory', 'bank_to_dataframe', 'TRAJECTORY_COLUMNS']

# Utilization attributes reported, by column name
_REPORTED = (
    ('basal_area', 'basal_areas'),
    ('trees_per_hectare', 'trees_per_hectare'),
    ('quad_mean_diameter', 'quad_mean_diameters'),
    ('lorey_height', 'lorey_heights'),
    ('whole_stem_volume', 'whole_stem_volumes'),
    ('close_utilization_volume', 'close_utilization_volumes'),
    ('cu_volume_minus_decay', 'cu_volumes_minus_decay'),
    ('cu_volume_minus_decay_and_waste', 'cu_volumes_minus_decay_and_waste'),
    ('cu_volume_minus_decay_waste_and_breakage', 'cu_volumes_minus_decay_waste_and_breakage'),
)

TRAJECTORY_COLUMNS = [
    'polygon', 'year', 'species_index', 'genus', 'utilization_class',
    'percent_forested', 'age_total', 'years_at_breast_height', 'dominant_height',
    'site_index',
] + [name for name, _ in _REPORTED]


class OutputSink(Protocol):
    """Receives the primary layer of a polygon once per reported year."""

    def write(self, polygon: Polygon, year: int, bank: Bank) -> None:
        ...


def _bank_rows(polygon_id: str, year: int, bank: Bank) -> List[Dict[str, Any]]:
    rows = []
    for i in range(bank.n_species + 1):
        genus = bank.species_names[i] or 'ALL'
        for uc in UtilizationClass:
            row: Dict[str, Any] = {
                'polygon': polygon_id,
                'year': year,
                'species_index': i,
                'genus': genus,
                'utilization_class': uc.name,
                'percent_forested': float(bank.percentages_of_forested_land[i]),
                'age_total': float(bank.age_totals[i]),
                'years_at_breast_height': float(bank.years_at_breast_height[i]),
                'dominant_height': float(bank.dominant_heights[i]),
                'site_index': float(bank.site_indices[i]),
            }
            for name, attribute in _REPORTED:
                row[name] = float(getattr(bank, attribute)[i, uc.position])
            rows.append(row)
    return rows


def bank_to_dataframe(bank: Bank, polygon_id: str = '', year: int = 0) -> pd.DataFrame:
    """One row per (species, utilization class) of a Bank; species index 0 is the layer."""
    return pd.DataFrame(_bank_rows(polygon_id, year, bank), columns=TRAJECTORY_COLUMNS)


class GrowthTrajectory:
    """OutputSink collecting every reported year of every polygon.

    Banks are converted to rows as they arrive, so later changes to a Bank
    do not alter what was recorded.
    """

    def __init__(self):
        self._rows: List[Dict[str, Any]] = []
        self._years: List[int] = []

    def write(self, polygon: Polygon, year: int, bank: Bank) -> None:
        self._rows.extend(_bank_rows(polygon.identifier, year, bank))
        self._years.append(year)

    @property
    def years(self) -> List[int]:
        """Reported years, in the order received."""
        return list(self._years)

    def __len__(self) -> int:
        return len(self._years)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self._rows, columns=TRAJECTORY_COLUMNS)

    def layer_totals(self) -> pd.DataFrame:
        """Layer (species index 0) values for the ALL class, one row per polygon and year."""
        df = self.to_dataframe()
        mask = (df['species_index'] == 0) & (df['utilization_class'] == UtilizationClass.ALL.name)
        return df.loc[mask].set_index(['polygon', 'year']).drop(
            columns=['species_index', 'genus', 'utilization_class']
        )
