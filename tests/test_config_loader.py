"""
Tests for coefficient lookup tables and configuration loading.
"""
import json

import pytest

from pyvdyp.bec import Region
from pyvdyp.coefficients import CoefficientMap, CoefficientTables, SiteCurveAgeMaximum
from pyvdyp.config_loader import (
    ConfigLoader,
    build_coefficient_tables,
    get_config_loader,
    load_coefficient_tables,
    load_control_variables,
)
from pyvdyp.control_variables import ForwardControlVariables
from pyvdyp.exceptions import (
    CoefficientNotFoundError,
    ConfigurationError,
    FileNotFoundError as VdypFileNotFoundError,
    InvalidDataError,
    ProcessingError,
    StandProcessingError,
)


class TestCoefficientMap:
    """Tests for wildcard lookup."""

    @pytest.fixture(scope="class")
    def table(self):
        return CoefficientMap('test', {
            ('PL', 'IDF'): 1,
            ('PL', '*'): 2,
            ('*', 'IDF'): 3,
            ('*', '*'): 4,
        })

    @pytest.mark.parametrize("key,expected", [
        pytest.param(('PL', 'IDF'), 1, id="exact"),
        pytest.param(('PL', 'CWH'), 2, id="bec wildcard"),
        pytest.param(('F', 'IDF'), 3, id="genus wildcard"),
        pytest.param(('F', 'CWH'), 4, id="both wildcards"),
    ])
    def test_lookup_precedence(self, table, key, expected):
        assert table.lookup(*key) == expected

    def test_leftmost_wildcard_first(self):
        """With equal wildcard counts, the leftmost position is tried first."""
        table = CoefficientMap('test', {('*', 'IDF'): 'genus', ('PL', '*'): 'bec'})
        assert table.find('PL', 'IDF') == 'genus'

    def test_missing_mandatory_entry(self):
        table = CoefficientMap('empty')
        assert table.find('PL') is None
        with pytest.raises(CoefficientNotFoundError) as exc_info:
            table.lookup('PL')
        assert isinstance(exc_info.value, ProcessingError)
        assert exc_info.value.table == 'empty'

    def test_default_entry(self):
        table = CoefficientMap('modifiers', {}, 0.0)
        assert table.lookup('C', 'COASTAL') == 0.0

    def test_is_read_only(self):
        table = CoefficientMap('test', {('A',): 1})
        with pytest.raises(TypeError):
            table[('B',)] = 2


class TestCoefficientTables:
    """Tests for the table container."""

    def test_unknown_bec(self):
        with pytest.raises(StandProcessingError):
            CoefficientTables().bec('XYZ')

    def test_neutral_defaults(self):
        tables = CoefficientTables()
        assert tables.decay_modifier('PL', 'INTERIOR') == 0.0
        assert tables.waste_modifier('PL', 'INTERIOR') == 0.0
        assert tables.age_maximum(99) == SiteCurveAgeMaximum()


class TestBuildCoefficientTables:
    """Tests for building tables from parsed configuration."""

    def test_key_parts_are_converted(self):
        tables = build_coefficient_tables({
            'basal_area_by_util': {'1/pl/idf': [-4.0, 2.6]},
            'upper_bounds': {'8': [55.0, 35.0]},
        })
        assert tables.basal_area_by_util.lookup(1, 'PL', 'IDF') == (-4.0, 2.6)
        assert tables.upper_bounds.lookup(8).basal_area == 55.0

    def test_becs(self):
        tables = build_coefficient_tables({
            'becs': {'CDF': {'name': 'Coastal Douglas-fir', 'region': 'coastal',
                             'growth_bec': 'CWH'}},
        })
        bec = tables.bec('CDF')
        assert bec.region is Region.COASTAL
        assert bec.growth_bec == 'CWH'
        assert bec.is_coastal

    @pytest.mark.parametrize("data", [
        pytest.param({'net_breakage': {'1': [8.0, -1.5]}}, id="too few coefficients"),
        pytest.param({'net_breakage': {'1/2': [8.0, -1.5, 1.0, 10.0]}}, id="too many key parts"),
        pytest.param({'upper_bounds': {'eight': [55.0, 35.0]}}, id="non-integer key part"),
        pytest.param({'becs': {'IDF': {'name': 'Interior Douglas-fir'}}}, id="bec without region"),
    ])
    def test_malformed_entries(self, data):
        with pytest.raises(InvalidDataError):
            build_coefficient_tables(data)

    def test_unknown_table(self):
        with pytest.raises(ConfigurationError):
            build_coefficient_tables({'no_such_table': {}})


class TestPackagedConfiguration:
    """Tests for the configuration shipped in pyvdyp/cfg."""

    def test_packaged_becs(self, tables):
        assert tables.bec('IDF').region is Region.INTERIOR
        assert tables.bec('CWH').region is Region.COASTAL
        assert tables.bec('PP').growth_bec == 'IDF'

    def test_every_genus_has_equation_groups(self, tables):
        for genus in ('AC', 'AT', 'B', 'C', 'D', 'E', 'F', 'H', 'L', 'MB',
                      'PA', 'PL', 'PW', 'PY', 'S', 'Y'):
            assert tables.volume_equation_groups.lookup(genus, 'IDF') > 0
            assert tables.decay_equation_groups.lookup(genus, 'IDF') > 0
            assert tables.breakage_equation_groups.lookup(genus, 'IDF') > 0
            assert tables.default_equation_groups.lookup(genus, 'IDF') > 0

    def test_site_curve_map(self, tables):
        assert tables.site_curves.find('PLI', 'INTERIOR') == 11
        assert tables.site_curves.find('H', 'COASTAL') == 31
        assert tables.site_curves.find('MB', 'COASTAL') is None

    def test_control_variables(self, config_loader):
        control = config_loader.load_control_variables()
        assert control == ForwardControlVariables(
            grow_target=10, update_during_growth=False, compatibility_variables=True
        )

    def test_site_curves_load(self, site_curves):
        assert 11 in site_curves.curves
        assert site_curves.default_curve('PL', coastal=True) == 12

    def test_convenience_functions_share_a_loader(self):
        assert get_config_loader() is get_config_loader()
        assert load_coefficient_tables() is load_coefficient_tables()
        assert isinstance(load_control_variables(), ForwardControlVariables)


class TestConfigLoader:
    """Tests for file loading and caching."""

    def test_missing_file(self, tmp_path):
        loader = ConfigLoader(tmp_path)
        with pytest.raises(VdypFileNotFoundError):
            loader.load_file('missing.yaml')

    def test_unsupported_suffix(self, tmp_path):
        (tmp_path / 'tables.ini').write_text('[x]\n')
        with pytest.raises(ConfigurationError):
            ConfigLoader(tmp_path).load_file('tables.ini')

    def test_empty_yaml(self, tmp_path):
        (tmp_path / 'empty.yaml').write_text('# nothing here\n')
        with pytest.raises(InvalidDataError):
            ConfigLoader(tmp_path).load_file('empty.yaml')

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / 'bad.yaml').write_text('key: [unclosed\n')
        with pytest.raises(InvalidDataError):
            ConfigLoader(tmp_path).load_file('bad.yaml')

    @pytest.mark.parametrize("filename,content", [
        pytest.param('bad.json', '{"becs": ', id="invalid json"),
        pytest.param('bad.toml', '[forward\n', id="invalid toml"),
        pytest.param('list.json', '[1, 2, 3]', id="json list"),
        pytest.param('scalar.yml', 'just text\n', id="yaml scalar"),
    ])
    def test_unreadable_files(self, tmp_path, filename, content):
        (tmp_path / filename).write_text(content)
        with pytest.raises(InvalidDataError):
            ConfigLoader(tmp_path).load_file(filename)

    def test_json_tables(self, tmp_path):
        data = {
            'becs': {'IDF': {'name': 'Interior Douglas-fir', 'region': 'I'}},
            'net_breakage': {'*': [8.0, -1.5, 1.0, 10.0]},
        }
        (tmp_path / 'coefficients.json').write_text(json.dumps(data))
        tables = ConfigLoader(tmp_path).load_coefficient_tables('coefficients.json')
        assert tables.net_breakage.lookup(4) == (8.0, -1.5, 1.0, 10.0)
        assert tables.bec('IDF').region is Region.INTERIOR

    def test_toml_control_variables(self, tmp_path):
        (tmp_path / 'control_variables.toml').write_text(
            '[forward]\ngrow_target = -1\ncompatibility_variables = false\n'
        )
        control = ConfigLoader(tmp_path).load_control_variables()
        assert control.grow_target == -1
        assert control.compatibility_variables is False
        assert control.update_during_growth is False

    def test_unknown_control_variable(self, tmp_path):
        (tmp_path / 'control_variables.toml').write_text('[forward]\nspeed = 3\n')
        with pytest.raises(ConfigurationError):
            ConfigLoader(tmp_path).load_control_variables()

    def test_files_are_cached(self, tmp_path):
        path = tmp_path / 'curves.yaml'
        path.write_text('curves: {}\n')
        loader = ConfigLoader(tmp_path)
        first = loader.load_file('curves.yaml')
        path.write_text('curves: {1: {rate: 0.02, shape: 1.3}}\n')
        assert loader.load_file('curves.yaml') is first

        loader.clear_cache()
        assert loader.load_file('curves.yaml') is not first


class TestForwardControlVariables:
    """Tests for resolving the growth target."""

    @pytest.mark.parametrize("grow_target,expected", [
        pytest.param(10, 2023, id="relative"),
        pytest.param(400, 2413, id="largest relative"),
        pytest.param(2050, 2050, id="absolute"),
        pytest.param(-1, 2030, id="polygon target"),
    ])
    def test_target_year(self, grow_target, expected):
        control = ForwardControlVariables(grow_target=grow_target)
        assert control.target_year(2013, 2030) == expected

    def test_polygon_target_missing(self):
        with pytest.raises(StandProcessingError):
            ForwardControlVariables(grow_target=-1).target_year(2013, None)

    def test_from_dict_defaults(self):
        assert ForwardControlVariables.from_dict({}) == ForwardControlVariables()

    def test_from_dict_bad_value(self):
        with pytest.raises(ConfigurationError):
            ForwardControlVariables.from_dict({'grow_target': 'soon'})
