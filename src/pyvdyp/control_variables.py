"""
Forward-projection control variables.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError, StandProcessingError

__all__ = ['ForwardControlVariables', 'MIN_POLYGON_YEAR']

# Growth target values up to this many years are relative to the polygon year
MAX_RELATIVE_GROW_TARGET = 400

MIN_POLYGON_YEAR = 1900


@dataclass(frozen=True)
class ForwardControlVariables:
    """Settings that steer a forward projection.

    Attributes:
        grow_target: -1 to use the polygon's own target year, a value up to
            400 for a number of years past the polygon year, or an absolute year
        update_during_growth: Recompute coverages and primary species height,
            age and site index at the start of every grown year
        compatibility_variables: Anchor estimates to the supplied stand data;
            when False every compatibility variable is zero
    """
    grow_target: int = 10
    update_during_growth: bool = False
    compatibility_variables: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForwardControlVariables':
        """Build control variables from a configuration mapping.

        Raises:
            ConfigurationError: If a value has the wrong type or an unknown key is given
        """
        known = {'grow_target', 'update_during_growth', 'compatibility_variables'}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown control variables: {sorted(unknown)}")
        try:
            return cls(
                grow_target=int(data.get('grow_target', cls.grow_target)),
                update_during_growth=bool(data.get('update_during_growth', cls.update_during_growth)),
                compatibility_variables=bool(
                    data.get('compatibility_variables', cls.compatibility_variables)
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid control variable value: {e}") from e

    def target_year(self, polygon_year: int, polygon_target_year: Optional[int]) -> int:
        """Resolve the year growth should stop at.

        Args:
            polygon_year: Year of the polygon's inventory
            polygon_target_year: Target year carried by the polygon, if any

        Returns:
            The target year

        Raises:
            StandProcessingError: If the polygon target is required but absent
        """
        if self.grow_target == -1:
            if polygon_target_year is None:
                raise StandProcessingError(
                    "Control variable requests the polygon target year, but none was supplied"
                )
            return polygon_target_year
        if self.grow_target <= MAX_RELATIVE_GROW_TARGET:
            return polygon_year + self.grow_target
        return self.grow_target
