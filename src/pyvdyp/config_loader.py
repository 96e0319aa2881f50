"""
Configuration loader for pyvdyp.
Provides unified access to YAML, TOML, and JSON configuration files.

Supports:
- YAML (.yaml, .yml) - coefficient tables, site curves
- TOML (.toml) - forward control variables
- JSON (.json) - any of the above

Coefficient tables are stored as one mapping per table. Each key is a
'/'-joined tuple (for example "1/PL/IDF" for utilization class 1, genus PL
and BEC zone IDF); the table's key schema says which parts are integers.
A key part of '*' matches anything.
"""
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import yaml

from .bec import BecDefinition, Region
from .coefficients import (
    WILDCARD,
    CoefficientMap,
    CoefficientTables,
    ComponentSizeLimits,
    NonprimaryHeightCoefficients,
    SiteCurveAgeMaximum,
    UpperBounds,
)
from .control_variables import ForwardControlVariables
from .exceptions import ConfigurationError, InvalidDataError
from .exceptions import FileNotFoundError as VdypFileNotFoundError
from .logging_config import get_logger
from .site_curves import ChapmanRichardsSiteCurves

# Handle TOML imports for different Python versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None

__all__ = [
    'ConfigLoader',
    'build_coefficient_tables',
    'get_config_loader',
    'load_coefficient_tables',
    'load_site_curves',
    'load_control_variables',
]

logger = get_logger(__name__)

COEFFICIENTS_FILE = 'coefficients.yaml'
SITE_CURVES_FILE = 'site_curves.yaml'
CONTROL_VARIABLES_FILE = 'control_variables.toml'


def _read_yaml(path: Path) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidDataError(f"YAML file {path.name}", str(e)) from e


def _read_toml(path: Path) -> Any:
    if tomllib is None:
        raise ConfigurationError(
            f"Reading {path.name} requires the 'tomli' package on Python < 3.11"
        )
    with open(path, 'rb') as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise InvalidDataError(f"TOML file {path.name}", str(e)) from e


def _read_json(path: Path) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidDataError(f"JSON file {path.name}", str(e)) from e


_READERS: Dict[str, Callable[[Path], Any]] = {
    '.yaml': _read_yaml,
    '.yml': _read_yaml,
    '.toml': _read_toml,
    '.json': _read_json,
}


def _int_part(part: str) -> Union[int, str]:
    return part if part == WILDCARD else int(part)


def _str_part(part: str) -> str:
    return part if part == WILDCARD else part.strip().upper()


def _floats(count: int) -> Callable[[Any], Tuple[float, ...]]:
    def convert(value: Any) -> Tuple[float, ...]:
        values = tuple(float(v) for v in value)
        if len(values) != count:
            raise ValueError(f"expected {count} coefficients, got {len(values)}")
        return values
    return convert


def _nonprimary(value: Sequence[Any]) -> NonprimaryHeightCoefficients:
    equation_index, a1, a2 = value
    return NonprimaryHeightCoefficients(int(equation_index), float(a1), float(a2))


def _age_maximum(value: Sequence[Any]) -> SiteCurveAgeMaximum:
    return SiteCurveAgeMaximum(*_floats(4)(value))


def _size_limits(value: Sequence[Any]) -> ComponentSizeLimits:
    return ComponentSizeLimits(*_floats(4)(value))


def _upper_bounds(value: Sequence[Any]) -> UpperBounds:
    return UpperBounds(*_floats(2)(value))


# Table name -> (key part converters, value converter)
TABLE_SCHEMAS: Dict[str, Tuple[Tuple[Callable[[str], Any], ...], Callable[[Any], Any]]] = {
    'site_curves': ((_str_part, _str_part), int),
    'site_curve_age_maximums': ((_int_part,), _age_maximum),
    'default_equation_groups': ((_str_part, _str_part), int),
    'equation_modifier_groups': ((_int_part, _int_part), int),
    'volume_equation_groups': ((_str_part, _str_part), int),
    'decay_equation_groups': ((_str_part, _str_part), int),
    'breakage_equation_groups': ((_str_part, _str_part), int),
    'hl_primary_p1': ((_str_part, _str_part), _floats(3)),
    'hl_primary_p2': ((_str_part, _str_part), _floats(2)),
    'hl_nonprimary': ((_str_part, _str_part, _str_part), _nonprimary),
    'by_species_dq': ((_str_part,), _floats(3)),
    'component_size_limits': ((_str_part, _str_part), _size_limits),
    'basal_area_by_util': ((_int_part, _str_part, _str_part), _floats(2)),
    'dq_by_util': ((_int_part, _str_part, _str_part), _floats(4)),
    'total_stand_whole_stem_volume': ((_int_part,), _floats(9)),
    'whole_stem_volume_by_util': ((_int_part, _int_part), _floats(4)),
    'close_utilization_volume': ((_int_part, _int_part), _floats(3)),
    'net_decay': ((_int_part, _int_part), _floats(3)),
    'decay_modifiers': ((_str_part, _str_part), float),
    'net_decay_waste': ((_str_part,), _floats(6)),
    'waste_modifiers': ((_str_part, _str_part), float),
    'net_breakage': ((_int_part,), _floats(4)),
    'small_component_probability': ((_str_part,), _floats(4)),
    'small_component_basal_area': ((_str_part,), _floats(4)),
    'small_component_dq': ((_str_part,), _floats(2)),
    'small_component_lorey_height': ((_str_part,), _floats(2)),
    'small_component_whole_stem_volume': ((_str_part,), _floats(4)),
    'basal_area_yield': ((_str_part, _int_part), _floats(7)),
    'upper_bounds': ((_int_part,), _upper_bounds),
}

# Tables whose misses return a neutral value
_TABLE_DEFAULTS: Dict[str, Any] = {
    'site_curve_age_maximums': SiteCurveAgeMaximum(),
    'decay_modifiers': 0.0,
    'waste_modifiers': 0.0,
}


def _build_table(name: str, entries: Dict[Any, Any]) -> CoefficientMap:
    parts, convert_value = TABLE_SCHEMAS[name]
    table = {}
    for raw_key, raw_value in (entries or {}).items():
        key_parts = str(raw_key).split('/')
        if len(key_parts) != len(parts):
            raise InvalidDataError(
                f"coefficient table '{name}'",
                f"key '{raw_key}' has {len(key_parts)} parts, expected {len(parts)}",
            )
        try:
            key = tuple(convert(part) for convert, part in zip(parts, key_parts))
            table[key] = convert_value(raw_value)
        except (TypeError, ValueError) as e:
            raise InvalidDataError(
                f"coefficient table '{name}'", f"entry '{raw_key}': {e}"
            ) from e
    if name in _TABLE_DEFAULTS:
        return CoefficientMap(name, table, _TABLE_DEFAULTS[name])
    return CoefficientMap(name, table)


def _build_becs(entries: Dict[str, Any]) -> Dict[str, BecDefinition]:
    becs = {}
    for alias, definition in (entries or {}).items():
        try:
            becs[str(alias)] = BecDefinition(
                alias=str(alias),
                name=str(definition.get('name', alias)),
                region=Region.from_string(definition['region']),
                growth_alias=definition.get('growth_bec'),
            )
        except (AttributeError, KeyError, ValueError) as e:
            raise InvalidDataError(f"BEC zone '{alias}'", str(e)) from e
    return becs


def build_coefficient_tables(data: Dict[str, Any]) -> CoefficientTables:
    """Build coefficient tables from a parsed configuration mapping.

    Args:
        data: Mapping with a 'becs' section and one section per table

    Returns:
        CoefficientTables instance

    Raises:
        ConfigurationError: If the mapping has unknown sections
        InvalidDataError: If a key or value is malformed
    """
    unknown = set(data) - set(TABLE_SCHEMAS) - {'becs'}
    if unknown:
        raise ConfigurationError(f"Unknown coefficient tables: {sorted(unknown)}")

    tables = {name: _build_table(name, data.get(name)) for name in TABLE_SCHEMAS}
    return CoefficientTables(becs=_build_becs(data.get('becs')), **tables)


class ConfigLoader:
    """Loads pyvdyp configuration from a cfg/ directory.

    Provides unified access to:
    - Coefficient tables (YAML)
    - Site curve parameters (YAML)
    - Forward control variables (TOML)

    Parsed files and built objects are cached by file name.

    Attributes:
        cfg_dir: Path to the configuration directory
    """

    def __init__(self, cfg_dir: Optional[Path] = None):
        """Initialize the configuration loader.

        Args:
            cfg_dir: Path to the configuration directory. Defaults to the
                packaged cfg/ directory.
        """
        if cfg_dir is None:
            cfg_dir = Path(__file__).parent / 'cfg'
        self.cfg_dir = Path(cfg_dir)
        self._file_cache: Dict[str, Dict[str, Any]] = {}
        self._tables_cache: Dict[str, CoefficientTables] = {}

    def _load_config_file(self, file_path: Path) -> Dict[str, Any]:
        """Parse one configuration file into a mapping.

        Raises:
            ConfigurationError: If no reader handles the file's suffix
            FileNotFoundError: If the file does not exist
            InvalidDataError: If the file does not parse, or is not a mapping
        """
        reader = _READERS.get(file_path.suffix.lower())
        if reader is None:
            raise ConfigurationError(
                f"Unsupported configuration file format {file_path.suffix!r}; "
                f"expected one of {', '.join(sorted(_READERS))}"
            )
        if not file_path.exists():
            raise VdypFileNotFoundError(str(file_path), "configuration file")

        data = reader(file_path)
        if not isinstance(data, dict):
            raise InvalidDataError(
                f"configuration file {file_path.name}", "top level must be a mapping"
            )
        return data

    def _resolve(self, filename: Union[str, Path]) -> Path:
        path = Path(filename)
        return path if path.is_absolute() else self.cfg_dir / path

    def load_file(self, filename: Union[str, Path]) -> Dict[str, Any]:
        """Load a configuration file with caching.

        Args:
            filename: File name relative to cfg_dir, or an absolute path

        Returns:
            Dictionary containing the parsed file
        """
        path = self._resolve(filename)
        cache_key = str(path)
        if cache_key not in self._file_cache:
            logger.debug("Loading configuration file %s", path)
            self._file_cache[cache_key] = self._load_config_file(path)
        return self._file_cache[cache_key]

    def load_coefficient_tables(self, filename: Union[str, Path] = COEFFICIENTS_FILE) -> CoefficientTables:
        """Load and build the coefficient tables.

        The built tables are cached; they are immutable and may be shared
        by any number of engines.
        """
        cache_key = str(self._resolve(filename))
        if cache_key not in self._tables_cache:
            self._tables_cache[cache_key] = build_coefficient_tables(self.load_file(filename))
        return self._tables_cache[cache_key]

    def load_site_curves(self, filename: Union[str, Path] = SITE_CURVES_FILE) -> ChapmanRichardsSiteCurves:
        """Load the parametric site curve service."""
        return ChapmanRichardsSiteCurves.from_dict(self.load_file(filename))

    def load_control_variables(self, filename: Union[str, Path] = CONTROL_VARIABLES_FILE
                               ) -> ForwardControlVariables:
        """Load forward control variables from the [forward] section of a file."""
        data = self.load_file(filename)
        return ForwardControlVariables.from_dict(data.get('forward', {}))

    def clear_cache(self) -> None:
        """Clear the file and table caches.

        Useful for testing or when configuration files may have changed.
        """
        self._file_cache.clear()
        self._tables_cache.clear()


# Global configuration loader instances (one per directory)
_config_loaders: Dict[str, ConfigLoader] = {}


def get_config_loader(cfg_dir: Optional[Path] = None) -> ConfigLoader:
    """Get a configuration loader instance for a configuration directory.

    Args:
        cfg_dir: Configuration directory. If None, the packaged cfg/ directory.

    Returns:
        ConfigLoader instance for the directory
    """
    key = str(cfg_dir) if cfg_dir is not None else ''
    if key not in _config_loaders:
        _config_loaders[key] = ConfigLoader(cfg_dir)
    return _config_loaders[key]


def load_coefficient_tables(cfg_dir: Optional[Path] = None) -> CoefficientTables:
    """Convenience function to load the default coefficient tables."""
    return get_config_loader(cfg_dir).load_coefficient_tables()


def load_site_curves(cfg_dir: Optional[Path] = None) -> ChapmanRichardsSiteCurves:
    """Convenience function to load the default site curves."""
    return get_config_loader(cfg_dir).load_site_curves()


def load_control_variables(cfg_dir: Optional[Path] = None) -> ForwardControlVariables:
    """Convenience function to load the default forward control variables."""
    return get_config_loader(cfg_dir).load_control_variables()
