"""
PyVDYP: Variable Density Yield Projection for Python

Forward projection of forest polygons: given a polygon's inventory at one
year, estimate its primary layer's dominant height, basal area, density,
diameter and volume chain by utilization class for each following year.

Quick Start:
    >>> from pyvdyp import ForwardProcessingEngine, GrowthTrajectory
    >>> from pyvdyp import load_coefficient_tables, load_site_curves, load_control_variables
    >>> engine = ForwardProcessingEngine(
    ...     load_coefficient_tables(), load_site_curves(), load_control_variables()
    ... )
    >>> trajectory = GrowthTrajectory()
    >>> engine.process_polygon(polygon, sink=trajectory)
    >>> print(trajectory.layer_totals())
"""

# =============================================================================
# Package Metadata
# =============================================================================
__version__ = "0.1.0"
__author__ = "PyVDYP Development Team"

# =============================================================================
# Core Classes - Primary API
# =============================================================================
from .engine import (
    ExecutionStep,
    ForwardProcessingEngine,
    GrowthResult,
    combine_percentages,
)
from .model import (
    Layer,
    LayerType,
    Polygon,
    Species,
    SpeciesDistribution,
)
from .results import GrowthTrajectory, OutputSink, bank_to_dataframe

# =============================================================================
# Stand State
# =============================================================================
from .bank import Bank
from .processing_state import (
    CompatibilityVariables,
    Outcome,
    OutcomeStatus,
    PolygonProcessingState,
)

# =============================================================================
# Utilization Classes
# =============================================================================
from .utilization import UtilizationClass, UtilizationVector

# =============================================================================
# Species and Classification
# =============================================================================
from .species import GenusCode, find_inventory_type_group, get_genus_code, validate_genus_code
from .bec import BecDefinition, Region

# =============================================================================
# Estimation
# =============================================================================
from .estimation import EstimationMethods
from .reconciliation import reconcile_components
from .site_curves import ChapmanRichardsSiteCurves, SiteCurveService, SiteIndexAgeType

# =============================================================================
# Configuration Loading
# =============================================================================
from .coefficients import CoefficientMap, CoefficientTables
from .control_variables import ForwardControlVariables
from .config_loader import (
    ConfigLoader,
    get_config_loader,
    load_coefficient_tables,
    load_control_variables,
    load_site_curves,
)

# =============================================================================
# Logging
# =============================================================================
from .logging_config import get_logger, setup_logging

# =============================================================================
# Exceptions
# =============================================================================
from .exceptions import (
    VdypError,
    ConfigurationError,
    DataError,
    InvalidDataError,
    ProcessingError,
    StandProcessingError,
    CoefficientNotFoundError,
    SiteCurveError,
    NoAnswerError,
    CurveError,
    SpeciesError,
)

# =============================================================================
# Public API Definition
# =============================================================================
__all__ = [
    # Package Metadata
    "__version__",
    "__author__",
    # Core Classes
    "ExecutionStep",
    "ForwardProcessingEngine",
    "GrowthResult",
    "combine_percentages",
    "Layer",
    "LayerType",
    "Polygon",
    "Species",
    "SpeciesDistribution",
    "GrowthTrajectory",
    "OutputSink",
    "bank_to_dataframe",
    # Stand State
    "Bank",
    "CompatibilityVariables",
    "Outcome",
    "OutcomeStatus",
    "PolygonProcessingState",
    # Utilization Classes
    "UtilizationClass",
    "UtilizationVector",
    # Species and Classification
    "GenusCode",
    "find_inventory_type_group",
    "get_genus_code",
    "validate_genus_code",
    "BecDefinition",
    "Region",
    # Estimation
    "EstimationMethods",
    "reconcile_components",
    "ChapmanRichardsSiteCurves",
    "SiteCurveService",
    "SiteIndexAgeType",
    # Configuration
    "CoefficientMap",
    "CoefficientTables",
    "ForwardControlVariables",
    "ConfigLoader",
    "get_config_loader",
    "load_coefficient_tables",
    "load_control_variables",
    "load_site_curves",
    # Logging
    "get_logger",
    "setup_logging",
    # Exceptions
    "VdypError",
    "ConfigurationError",
    "DataError",
    "InvalidDataError",
    "ProcessingError",
    "StandProcessingError",
    "CoefficientNotFoundError",
    "SiteCurveError",
    "NoAnswerError",
    "CurveError",
    "SpeciesError",
]
