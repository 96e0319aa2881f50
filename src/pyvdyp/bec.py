"""
Biogeoclimatic (BEC) zone definitions and regions.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

__all__ = ['Region', 'BecDefinition']


class Region(str, Enum):
    """Coastal or interior region of a BEC zone."""

    COASTAL = "COASTAL"
    INTERIOR = "INTERIOR"

    @classmethod
    def from_string(cls, value: str) -> 'Region':
        normalized = value.strip().upper()
        if normalized in ('C', 'COAST', 'COASTAL'):
            return cls.COASTAL
        if normalized in ('I', 'INTERIOR'):
            return cls.INTERIOR
        raise ValueError(f"Unknown region: '{value}'")


@dataclass(frozen=True)
class BecDefinition:
    """A BEC zone as used for coefficient selection.

    Attributes:
        alias: Zone code, e.g. "IDF"
        name: Descriptive zone name
        region: Coastal or interior
        growth_alias: Zone whose growth coefficients this zone uses
            (defaults to the zone itself)
    """
    alias: str
    name: str
    region: Region
    growth_alias: Optional[str] = None

    @property
    def growth_bec(self) -> str:
        return self.growth_alias or self.alias

    @property
    def is_coastal(self) -> bool:
        return self.region is Region.COASTAL
