"""
Shared pytest fixtures for pyvdyp tests.

This module provides the packaged coefficient tables and site curves, a
sample two-species interior polygon and simple site-curve stand-ins used
to drive the engine into specific branches.
"""
import pytest

from pyvdyp.bank import Bank
from pyvdyp.config_loader import ConfigLoader
from pyvdyp.control_variables import ForwardControlVariables
from pyvdyp.engine import ForwardProcessingEngine
from pyvdyp.exceptions import NoAnswerError
from pyvdyp.model import Layer, LayerType, Polygon, Species, SpeciesDistribution
from pyvdyp.site_curves import SiteIndexAgeType
from pyvdyp.utilization import UtilizationVector


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def config_loader():
    """A loader over the packaged cfg/ directory.

    Session-scoped; parsed files are cached by the loader.
    """
    return ConfigLoader()


@pytest.fixture(scope="session")
def tables(config_loader):
    """The packaged coefficient tables."""
    return config_loader.load_coefficient_tables()


@pytest.fixture(scope="session")
def site_curves(config_loader):
    """The packaged Chapman-Richards site curves."""
    return config_loader.load_site_curves()


@pytest.fixture
def engine(tables, site_curves):
    """An engine that grows 10 years with compatibility variables on."""
    return ForwardProcessingEngine(tables, site_curves, ForwardControlVariables())


@pytest.fixture
def idf(tables):
    """The interior IDF BEC zone."""
    return tables.bec('IDF')


# =============================================================================
# Polygon Fixtures
# =============================================================================

def _lodgepole_pine(**overrides):
    values = dict(
        genus='PL',
        percent_genus=70.0,
        distributions=[SpeciesDistribution('PLI', 100.0)],
        site_index=18.0,
        age_total=60.0,
        years_to_breast_height=8.0,
        dominant_height=18.4,
        basal_area=UtilizationVector.of(0.3, 21.0, 5.0, 6.5, 5.5, 4.0),
        trees_per_hectare=UtilizationVector.of(106.10, 1261.01, 636.62, 367.83, 175.07, 81.49),
        quad_mean_diameter=UtilizationVector.of(6.0, 14.56, 10.0, 15.0, 20.0, 25.0),
        lorey_height=UtilizationVector.of(6.0, 16.0, 12.0, 15.5, 17.5, 19.0),
        whole_stem_volume=UtilizationVector.of(0.8, 151.0, 30.0, 45.0, 42.0, 34.0),
        close_utilization_volume=UtilizationVector.of(0.0, 128.0, 20.0, 38.0, 38.0, 32.0),
        cu_volume_minus_decay=UtilizationVector.of(0.0, 121.0, 19.0, 36.0, 36.0, 30.0),
        cu_volume_minus_decay_and_waste=UtilizationVector.of(0.0, 117.5, 18.5, 35.0, 35.0, 29.0),
        cu_volume_minus_decay_waste_and_breakage=UtilizationVector.of(
            0.0, 114.0, 18.0, 34.0, 34.0, 28.0
        ),
    )
    values.update(overrides)
    return Species(**values)


def _douglas_fir(**overrides):
    values = dict(
        genus='F',
        percent_genus=30.0,
        distributions=[SpeciesDistribution('FDI', 100.0)],
        age_total=65.0,
        basal_area=UtilizationVector.of(0.2, 9.0, 2.0, 3.0, 2.5, 1.5),
        trees_per_hectare=UtilizationVector.of(84.18, 528.41, 254.65, 169.77, 75.74, 28.25),
        quad_mean_diameter=UtilizationVector.of(5.5, 14.73, 10.0, 15.0, 20.5, 26.0),
        lorey_height=UtilizationVector.of(5.0, 15.0, 11.5, 14.5, 16.5, 18.0),
        whole_stem_volume=UtilizationVector.of(0.4, 67.0, 12.0, 21.0, 20.0, 14.0),
        close_utilization_volume=UtilizationVector.of(0.0, 56.0, 8.0, 17.0, 18.0, 13.0),
        cu_volume_minus_decay=UtilizationVector.of(0.0, 52.5, 7.5, 16.0, 17.0, 12.0),
        cu_volume_minus_decay_and_waste=UtilizationVector.of(0.0, 50.9, 7.3, 15.5, 16.5, 11.6),
        cu_volume_minus_decay_waste_and_breakage=UtilizationVector.of(
            0.0, 49.3, 7.1, 15.0, 16.0, 11.2
        ),
    )
    values.update(overrides)
    return Species(**values)


@pytest.fixture
def make_species():
    """Factory for the sample species; keyword arguments override fields.

    Usage:
        pl = make_species('PL', site_index=None)
    """
    builders = {'PL': _lodgepole_pine, 'F': _douglas_fir}

    def _make(template, /, **overrides):
        return builders[template](**overrides)
    return _make


@pytest.fixture
def make_polygon(make_species):
    """Factory for polygons in the IDF zone.

    Defaults to the sample PL/F primary layer at year 2013.
    """
    def _make(species=None, year=2013, bec_zone='IDF', target_year=None):
        if species is None:
            species = [make_species('PL'), make_species('F')]
        return Polygon(
            identifier='01002 S000001 00',
            year=year,
            bec_zone=bec_zone,
            layers={LayerType.PRIMARY: Layer(LayerType.PRIMARY, species)},
            target_year=target_year,
        )
    return _make


@pytest.fixture
def sample_polygon(make_polygon):
    """A 70% lodgepole pine / 30% Douglas-fir interior stand.

    The pine carries its site index, ages and dominant height; the fir
    has only its total age, so its site index and years to breast height
    must be estimated.
    """
    return make_polygon()


@pytest.fixture
def sample_bank(sample_polygon, idf, tables):
    """Bank of the sample polygon's primary layer."""
    return Bank.from_layer(sample_polygon.primary_layer, idf, tables)


# =============================================================================
# Site Curve Stand-ins
# =============================================================================

class FixedAgeSiteCurves:
    """Site curves whose age inversion always returns the same age.

    Heights grow linearly with breast height age at `slope` m/yr above
    breast height. Only the methods the growth step uses are meaningful.
    """

    def __init__(self, age: float, slope: float = 0.3):
        self.age = age
        self.slope = slope

    def age_from_height(self, curve, height, age_type, site_index, years_to_breast_height):
        return self.age

    def height_from_age(self, curve, age, age_type, site_index, years_to_breast_height):
        if age_type is SiteIndexAgeType.AT_TOTAL:
            age -= years_to_breast_height
        return 1.3 + self.slope * max(age, 0.0)

    def years_to_breast_height(self, curve, site_index):
        return 5.0

    def convert_site_index(self, from_curve, site_index, to_curve):
        if from_curve != to_curve:
            raise NoAnswerError("no conversions")
        return site_index

    def default_curve(self, species_code, coastal):
        return 1


@pytest.fixture
def fixed_age_site_curves():
    """Factory for FixedAgeSiteCurves."""
    return FixedAgeSiteCurves
