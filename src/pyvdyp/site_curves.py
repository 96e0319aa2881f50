"""
Site-curve service interface and a parametric implementation.

The engine only talks to site curves through SiteCurveService. Each method
may raise one of the SiteCurveError conditions:

- NoAnswerError: the curve has no answer for these inputs
- CurveError: the curve number is unknown
- SpeciesError: the species has no curve

ChapmanRichardsSiteCurves is a complete, configurable service built on a
Chapman-Richards height curve anchored at a base breast-height age:

    H(t) = 1.3 + (SI - 1.3) * ((1 - exp(-k*t)) / (1 - exp(-k*base))) ** c

where t is breast-height age, SI the site index (height at the base age)
and k, c the curve's rate and shape. The curve passes through 1.3 m at
breast-height age 0 and through SI at the base age.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Protocol, Tuple

from .exceptions import ConfigurationError, CurveError, NoAnswerError, SpeciesError

__all__ = [
    'BREAST_HEIGHT',
    'SiteIndexAgeType',
    'SiteCurveService',
    'SiteCurveParameters',
    'ChapmanRichardsSiteCurves',
]

# Breast height (m)
BREAST_HEIGHT = 1.3


class SiteIndexAgeType(Enum):
    """Whether an age is measured from germination or from breast height."""
    AT_TOTAL = "total"
    AT_BREAST = "breast"


class SiteCurveService(Protocol):
    """Age, height and site index conversions along site curves."""

    def age_from_height(self, curve: int, height: float, age_type: SiteIndexAgeType,
                        site_index: float, years_to_breast_height: float) -> float:
        ...

    def height_from_age(self, curve: int, age: float, age_type: SiteIndexAgeType,
                        site_index: float, years_to_breast_height: float) -> float:
        ...

    def years_to_breast_height(self, curve: int, site_index: float) -> float:
        ...

    def convert_site_index(self, from_curve: int, site_index: float, to_curve: int) -> float:
        ...

    def default_curve(self, species_code: str, coastal: bool) -> int:
        ...


@dataclass(frozen=True)
class SiteCurveParameters:
    """Parameters of one Chapman-Richards site curve.

    Attributes:
        name: Curve description
        rate: Rate parameter k (1/yr)
        shape: Shape parameter c
        base_age: Breast-height age at which height equals site index
        ytbh_intercept: Years to breast height = intercept + slope / SI
        ytbh_slope: See ytbh_intercept
    """
    name: str
    rate: float
    shape: float
    base_age: float = 50.0
    ytbh_intercept: float = 2.0
    ytbh_slope: float = 80.0

    def __post_init__(self):
        if self.rate <= 0 or self.shape <= 0 or self.base_age <= 0:
            raise ConfigurationError(
                f"Site curve '{self.name}' needs positive rate, shape and base age"
            )

    @property
    def base_fraction(self) -> float:
        return 1.0 - math.exp(-self.rate * self.base_age)


class ChapmanRichardsSiteCurves:
    """SiteCurveService over a table of Chapman-Richards curves.

    Attributes:
        curves: Curve parameters by curve number
        conversions: (from curve, to curve) -> (intercept, slope) of the
            linear site index conversion
        defaults: Species or genus code -> (coastal curve, interior curve)
    """

    def __init__(self, curves: Mapping[int, SiteCurveParameters],
                 conversions: Mapping[Tuple[int, int], Tuple[float, float]] = None,
                 defaults: Mapping[str, Tuple[int, int]] = None):
        self.curves: Dict[int, SiteCurveParameters] = dict(curves)
        self.conversions: Dict[Tuple[int, int], Tuple[float, float]] = dict(conversions or {})
        self.defaults: Dict[str, Tuple[int, int]] = dict(defaults or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChapmanRichardsSiteCurves':
        """Build the service from a configuration mapping.

        Expected layout::

            curves:
              11: {name: ..., rate: 0.03, shape: 1.3, ytbh: [2.0, 80.0]}
            conversions:
              "11/12": [0.5, 0.95]
            defaults:
              PL: [13, 11]

        Raises:
            ConfigurationError: If the mapping is malformed
        """
        try:
            curves = {}
            for number, params in data.get('curves', {}).items():
                intercept, slope = params.get('ytbh', (2.0, 80.0))
                curves[int(number)] = SiteCurveParameters(
                    name=str(params.get('name', f"curve {number}")),
                    rate=float(params['rate']),
                    shape=float(params['shape']),
                    base_age=float(params.get('base_age', 50.0)),
                    ytbh_intercept=float(intercept),
                    ytbh_slope=float(slope),
                )
            conversions = {}
            for key, (intercept, slope) in data.get('conversions', {}).items():
                from_curve, to_curve = (int(part) for part in str(key).split('/'))
                conversions[(from_curve, to_curve)] = (float(intercept), float(slope))
            defaults = {
                str(code).upper(): (int(pair[0]), int(pair[1]))
                for code, pair in data.get('defaults', {}).items()
            }
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed site curve configuration: {e}") from e
        return cls(curves, conversions, defaults)

    def _curve(self, curve: int) -> SiteCurveParameters:
        try:
            return self.curves[curve]
        except KeyError:
            raise CurveError(f"Unknown site curve {curve}") from None

    @staticmethod
    def _check_site_index(site_index: float) -> None:
        if math.isnan(site_index) or site_index <= BREAST_HEIGHT:
            raise NoAnswerError(f"Site index {site_index} must exceed breast height")

    def height_from_age(self, curve: int, age: float, age_type: SiteIndexAgeType,
                        site_index: float, years_to_breast_height: float) -> float:
        params = self._curve(curve)
        self._check_site_index(site_index)
        bh_age = age - years_to_breast_height if age_type is SiteIndexAgeType.AT_TOTAL else age

        if bh_age <= 0:
            # Linear from the ground to breast height
            total_age = bh_age + years_to_breast_height
            if total_age <= 0 or years_to_breast_height <= 0:
                return 0.0
            return BREAST_HEIGHT * total_age / years_to_breast_height

        fraction = (1.0 - math.exp(-params.rate * bh_age)) / params.base_fraction
        return BREAST_HEIGHT + (site_index - BREAST_HEIGHT) * fraction ** params.shape

    def age_from_height(self, curve: int, height: float, age_type: SiteIndexAgeType,
                        site_index: float, years_to_breast_height: float) -> float:
        params = self._curve(curve)
        self._check_site_index(site_index)

        if height <= BREAST_HEIGHT:
            bh_age = max(height, 0.0) / BREAST_HEIGHT * years_to_breast_height - years_to_breast_height
        else:
            ratio = (height - BREAST_HEIGHT) / (site_index - BREAST_HEIGHT)
            inner = 1.0 - ratio ** (1.0 / params.shape) * params.base_fraction
            if inner <= 0:
                raise NoAnswerError(
                    f"Height {height:.2f} m is beyond the asymptote of curve {curve} "
                    f"at site index {site_index:.2f}"
                )
            bh_age = -math.log(inner) / params.rate

        if age_type is SiteIndexAgeType.AT_TOTAL:
            return bh_age + years_to_breast_height
        return bh_age

    def years_to_breast_height(self, curve: int, site_index: float) -> float:
        params = self._curve(curve)
        self._check_site_index(site_index)
        return params.ytbh_intercept + params.ytbh_slope / site_index

    def convert_site_index(self, from_curve: int, site_index: float, to_curve: int) -> float:
        self._curve(from_curve)
        self._curve(to_curve)
        if from_curve == to_curve:
            return site_index
        try:
            intercept, slope = self.conversions[(from_curve, to_curve)]
        except KeyError:
            raise NoAnswerError(
                f"No site index conversion from curve {from_curve} to curve {to_curve}"
            ) from None
        return intercept + slope * site_index

    def default_curve(self, species_code: str, coastal: bool) -> int:
        try:
            coastal_curve, interior_curve = self.defaults[species_code.upper()]
        except KeyError:
            raise SpeciesError(f"No default site curve for species '{species_code}'") from None
        return coastal_curve if coastal else interior_curve
