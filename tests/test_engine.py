"""
Tests for the forward processing engine: the pipeline steps, dominant
height and basal area growth, and full projections.
"""
import dataclasses
import logging
import math

import numpy as np
import pandas as pd
import pytest

from pyvdyp.bank import NO_CURVE, UTILIZATION_ATTRIBUTES
from pyvdyp.coefficients import CoefficientMap, SiteCurveAgeMaximum
from pyvdyp.control_variables import ForwardControlVariables
from pyvdyp.engine import (
    ExecutionStep,
    ForwardProcessingEngine,
    compatibility_logit,
    whole_stem_compatibility,
)
from pyvdyp.exceptions import ProcessingError, StandProcessingError
from pyvdyp.model import Layer, LayerType, Polygon, SpeciesDistribution
from pyvdyp.processing_state import (
    CompatibilityVariables,
    OutcomeStatus,
    SpeciesRankingDetails,
)
from pyvdyp.results import GrowthTrajectory
from pyvdyp.site_curves import ChapmanRichardsSiteCurves, SiteIndexAgeType
from pyvdyp.utilization import (
    PI_40K,
    UTIL_CLASSES,
    UtilizationClass,
    UtilizationVector,
    sum_utilization_components,
)

AT_BREAST = SiteIndexAgeType.AT_BREAST
ALL = UtilizationClass.ALL.position
BANDS = [uc.position for uc in UTIL_CLASSES]

# Ranking of the sample polygon: PL primary, F secondary, ITG 29
SAMPLE_RANKING = SpeciesRankingDetails(
    primary_index=1, secondary_index=2, inventory_type_group=29,
    basal_area_group1=29, basal_area_group3=8,
)

SUMMED_ATTRIBUTES = [name for name in UTILIZATION_ATTRIBUTES
                     if name not in ('quad_mean_diameters', 'lorey_heights')]

# Volumes the compatibility variables anchor to the supplied values
ANCHORED_VOLUMES = ['whole_stem_volumes', 'close_utilization_volumes',
                    'cu_volumes_minus_decay', 'cu_volumes_minus_decay_and_waste']


def _assert_bank_consistent(bank):
    for i in range(bank.n_species + 1):
        for uc in UtilizationClass:
            p = uc.position
            assert bank.basal_areas[i, p] == pytest.approx(
                PI_40K * bank.quad_mean_diameters[i, p] ** 2 * bank.trees_per_hectare[i, p],
                rel=1e-6, abs=1e-9,
            )
        for name in SUMMED_ATTRIBUTES:
            vector = bank.vector(name, i)
            assert vector[UtilizationClass.ALL] == pytest.approx(
                sum_utilization_components(vector), rel=1e-6, abs=1e-9
            )


class TestExecutionStep:
    """Tests for step ordering."""

    def test_order(self):
        assert ExecutionStep.CHECK_FOR_WORK.predecessor() is ExecutionStep.NONE
        assert ExecutionStep.GROW.successor() is ExecutionStep.ALL

    def test_ends(self):
        with pytest.raises(ValueError):
            ExecutionStep.NONE.predecessor()
        with pytest.raises(ValueError):
            ExecutionStep.ALL.successor()

    def test_includes(self):
        assert ExecutionStep.ALL.includes(ExecutionStep.GROW)
        assert ExecutionStep.CALCULATE_COVERAGES.includes(ExecutionStep.CHECK_FOR_WORK)
        assert not ExecutionStep.CALCULATE_COVERAGES.includes(ExecutionStep.GROW)


class TestPolygonValidation:
    """Tests for polygons rejected before any step runs."""

    def test_percentages_must_total_100(self, engine, make_species, make_polygon):
        species = [make_species('PL'), make_species('F', percent_genus=20.0)]
        with pytest.raises(StandProcessingError):
            engine.process_polygon(make_polygon(species))

    def test_year_too_early(self, engine, make_polygon):
        with pytest.raises(StandProcessingError):
            engine.process_polygon(make_polygon(year=1899))

    def test_unknown_bec(self, engine, make_polygon):
        with pytest.raises(StandProcessingError):
            engine.process_polygon(make_polygon(bec_zone='XYZ'))

    def test_no_primary_layer(self, engine):
        with pytest.raises(StandProcessingError):
            engine.process_polygon(Polygon('p', 2013, 'IDF'))

    def test_polygon_target_required(self, tables, site_curves, sample_polygon):
        engine = ForwardProcessingEngine(
            tables, site_curves, ForwardControlVariables(grow_target=-1)
        )
        with pytest.raises(StandProcessingError):
            engine.process_polygon(sample_polygon)

    def test_no_species_with_basal_area(self, engine, make_species, make_polygon):
        trace = make_species(
            'PL', percent_genus=100.0,
            basal_area=UtilizationVector.of(0.0, 0.0005, 0.0005, 0.0, 0.0, 0.0),
        )
        with pytest.raises(ProcessingError):
            engine.process_polygon(make_polygon([trace]), ExecutionStep.CHECK_FOR_WORK)


class TestPipelineSteps:
    """Tests for the steps up to compatibility variables."""

    def test_no_steps(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon, ExecutionStep.NONE)
        assert not state.has_rankings
        assert list(state.bank.site_curve_numbers) == [NO_CURVE] * 3

    def test_site_curves(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon, ExecutionStep.CALCULATE_MISSING_SITE_CURVES)
        assert list(state.bank.site_curve_numbers[1:]) == [11, 21]

    def test_supplied_site_curve_is_kept(self, engine, make_species, make_polygon):
        polygon = make_polygon([make_species('PL', site_curve_number=12), make_species('F')])
        state = engine.process_polygon(polygon, ExecutionStep.CALCULATE_MISSING_SITE_CURVES)
        assert state.bank.site_curve_numbers[1] == 12

    def test_no_site_curve(self, tables, make_species, make_polygon):
        engine = ForwardProcessingEngine(tables, ChapmanRichardsSiteCurves({}))
        maple = make_species('PL', genus='MB', distributions=[SpeciesDistribution('MB')])
        polygon = make_polygon([maple, make_species('F')])
        with pytest.raises(ProcessingError):
            engine.process_polygon(polygon, ExecutionStep.CALCULATE_MISSING_SITE_CURVES)

    def test_coverages_follow_basal_area(self, engine, make_species, make_polygon):
        polygon = make_polygon([
            make_species('PL', percent_genus=50.0), make_species('F', percent_genus=50.0)
        ])
        state = engine.process_polygon(polygon, ExecutionStep.CALCULATE_COVERAGES)
        assert list(state.bank.percentages_of_forested_land[1:]) == (
            pytest.approx([70.0, 30.0])
        )

    def test_rankings(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon, ExecutionStep.DETERMINE_POLYGON_RANKINGS)
        assert state.ranking == SAMPLE_RANKING
        assert state.primary_genus == 'PL'
        assert state.bank.site_curve_numbers[0] == 11
        with pytest.raises(RuntimeError):
            state.primary_details

    def test_rankings_combine_pine_genera(self, tables, site_curves, make_species, make_polygon):
        """Lodgepole and whitebark pine rank together unless told otherwise."""
        def basal_areas(total):
            return UtilizationVector.of(0.1, total, total / 4, total / 4, total / 4, total / 4)

        polygon = make_polygon([
            make_species('PL', percent_genus=40.0, basal_area=basal_areas(12.0)),
            make_species('PL', genus='PA', percent_genus=30.0, basal_area=basal_areas(9.0),
                         distributions=[SpeciesDistribution('PA')]),
            make_species('F', percent_genus=30.0, basal_area=basal_areas(9.0)),
        ])
        step = ExecutionStep.DETERMINE_POLYGON_RANKINGS

        combined = ForwardProcessingEngine(tables, site_curves).process_polygon(polygon, step)
        assert combined.ranking.secondary_index == 3
        assert combined.ranking.inventory_type_group == 29

        separate = ForwardProcessingEngine(
            tables, site_curves, species_to_combine=()
        ).process_polygon(polygon, step)
        assert separate.ranking.secondary_index == 2
        assert separate.ranking.inventory_type_group == 28
        assert separate.ranking.basal_area_group1 == 22

    def test_site_index_from_primary(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon, ExecutionStep.ESTIMATE_MISSING_SITE_INDICES)
        assert state.bank.site_indices[2] == pytest.approx(0.5 + 0.95 * 18.0)
        assert state.bank.site_indices[0] == 18.0
        found = state.outcomes_with_status(OutcomeStatus.FOUND)
        assert [o.species_index for o in found] == [2]

    def test_primary_site_index_from_others(self, engine, make_species, make_polygon):
        polygon = make_polygon([
            make_species('PL', site_index=None), make_species('F', site_index=17.6)
        ])
        state = engine.process_polygon(polygon, ExecutionStep.ESTIMATE_MISSING_SITE_INDICES)
        assert state.bank.site_indices[1] == pytest.approx(-0.526 + 1.0526 * 17.6)
        defaulted = state.outcomes_with_status(OutcomeStatus.DEFAULTED)
        assert [o.species_index for o in defaulted] == [1]

    def test_unconvertible_site_index(self, engine, make_species, make_polygon):
        """The coastal fir curve has no conversion from the interior pine curve."""
        polygon = make_polygon([make_species('PL'), make_species('F', site_curve_number=22)])
        state = engine.process_polygon(polygon, ExecutionStep.ESTIMATE_MISSING_SITE_INDICES)
        assert math.isnan(state.bank.site_indices[2])
        unresolved = state.outcomes_with_status(OutcomeStatus.UNRESOLVED)
        assert [o.species_index for o in unresolved] == [2]

    def test_years_to_breast_height(self, engine, sample_polygon):
        state = engine.process_polygon(
            sample_polygon, ExecutionStep.ESTIMATE_MISSING_YEARS_TO_BREAST_HEIGHT
        )
        assert state.bank.years_to_breast_height[1] == 8.0
        assert state.bank.years_to_breast_height[2] == pytest.approx(2.0 + 80.0 / 17.6)

    def test_primary_details(self, engine, sample_polygon):
        state = engine.process_polygon(
            sample_polygon, ExecutionStep.CALCULATE_DOMINANT_HEIGHT_AGE_SITE_INDEX
        )
        details = state.primary_details
        assert details.dominant_height == 18.4
        assert details.site_index == pytest.approx(18.0)
        assert details.total_age == 60.0
        assert details.years_at_breast_height == 52.0
        assert details.years_to_breast_height == 8.0

    def test_dominant_height_from_lorey_height(self, engine, make_species, make_polygon):
        polygon = make_polygon([make_species('PL', dominant_height=None), make_species('F')])
        state = engine.process_polygon(
            polygon, ExecutionStep.CALCULATE_DOMINANT_HEIGHT_AGE_SITE_INDEX
        )
        assert state.primary_details.dominant_height > 16.0

    def test_primary_age_from_secondary(self, engine, make_species, make_polygon):
        polygon = make_polygon([make_species('PL', age_total=None), make_species('F')])
        state = engine.process_polygon(
            polygon, ExecutionStep.CALCULATE_DOMINANT_HEIGHT_AGE_SITE_INDEX
        )
        assert state.primary_details.total_age == 65.0
        assert state.primary_details.years_at_breast_height == 57.0

    @pytest.mark.parametrize("pine,fir,reason_code", [
        pytest.param(
            dict(dominant_height=None, lorey_height=UtilizationVector.missing()), {}, 2,
            id="no height",
        ),
        pytest.param(dict(age_total=None), dict(age_total=None), 5, id="no age"),
        pytest.param(dict(site_index=None), {}, 7, id="no site index"),
    ])
    def test_missing_primary_data(self, engine, make_species, make_polygon,
                                  pine, fir, reason_code):
        polygon = make_polygon([make_species('PL', **pine), make_species('F', **fir)])
        with pytest.raises(ProcessingError) as exc_info:
            engine.process_polygon(polygon, ExecutionStep.CALCULATE_DOMINANT_HEIGHT_AGE_SITE_INDEX)
        assert exc_info.value.reason_code == reason_code

    def test_unresolved_outcomes_are_logged(self, engine, make_species, make_polygon, caplog):
        polygon = make_polygon([make_species('PL', site_index=None), make_species('F')])
        with caplog.at_level(logging.WARNING, logger='pyvdyp'):
            engine.process_polygon(polygon, ExecutionStep.ESTIMATE_MISSING_YEARS_TO_BREAST_HEIGHT)
        assert any('unresolved' in record.getMessage() for record in caplog.records)


class TestCompatibilityVariables:
    """Tests for the offsets anchoring estimates to supplied values."""

    def test_logit_of_matching_values(self):
        assert compatibility_logit(20.0, 40.0, 20.0) == 0.0

    def test_logit_limits(self):
        assert compatibility_logit(50.0, 40.0, 20.0) == 7.0
        assert compatibility_logit(0.0, 40.0, 20.0) == -7.0

    def test_whole_stem_log_floor(self):
        assert whole_stem_compatibility(0.0, 10.0, 10.0 * math.e) == pytest.approx(-3.0)
        assert whole_stem_compatibility(20.0, 10.0, 20.0) == 0.0

    def test_disabled(self, tables, site_curves, sample_polygon):
        engine = ForwardProcessingEngine(
            tables, site_curves, ForwardControlVariables(compatibility_variables=False)
        )
        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        for i in state.bank.indices:
            assert state.compatibility_variables(i) == CompatibilityVariables()

    def test_enabled(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        assert state.has_compatibility_variables
        for i in state.bank.indices:
            cv = state.compatibility_variables(i)
            values = [cv.basal_area[uc] for uc in UTIL_CLASSES]
            values += [vector[uc] for vector in cv.volume.values() for uc in UTIL_CLASSES]
            values += list(cv.small.values())
            assert all(math.isfinite(v) for v in values)
            assert any(v != 0.0 for v in values)

    @pytest.mark.parametrize("i", [
        pytest.param(1, id="PL"),
        pytest.param(2, id="F"),
    ])
    def test_supplied_bands_are_reproduced(self, engine, sample_polygon, i):
        """Re-estimating the starting bank with its offsets gives back the supplied values."""
        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        supplied = state.bank
        bank = supplied.copy()
        engine.estimate_species_components(
            state, bank, i, state.primary_details.years_at_breast_height
        )

        for name in ('basal_areas', 'quad_mean_diameters'):
            np.testing.assert_allclose(
                getattr(bank, name)[i, BANDS], getattr(supplied, name)[i, BANDS], rtol=1e-6
            )
        for name in ANCHORED_VOLUMES:
            np.testing.assert_allclose(
                getattr(bank, name)[i, [ALL] + BANDS],
                getattr(supplied, name)[i, [ALL] + BANDS],
                rtol=1e-6, err_msg=name,
            )

    def test_whole_stem_total_follows_offsets(self, engine, sample_polygon):
        """The whole stem total is the sum of the offset bands."""
        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        bank = state.bank.copy()
        engine.estimate_species_components(
            state, bank, 2, state.primary_details.years_at_breast_height
        )
        whole_stem = bank.vector('whole_stem_volumes', 2)
        assert whole_stem[UtilizationClass.ALL] == pytest.approx(67.0)
        assert whole_stem[UtilizationClass.ALL] == pytest.approx(
            sum_utilization_components(whole_stem)
        )

    def test_not_set_before_step(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon, ExecutionStep.CALCULATE_COVERAGES)
        with pytest.raises(RuntimeError):
            state.compatibility_variables(1)


class TestGrowDominantHeight:
    """Tests for one year of dominant height growth."""

    def test_along_the_curve(self, engine, site_curves, idf):
        age = site_curves.age_from_height(11, 18.4, AT_BREAST, 18.0, 8.0)
        expected = (site_curves.height_from_age(11, age + 1.0, AT_BREAST, 18.0, 8.0)
                    - site_curves.height_from_age(11, age, AT_BREAST, 18.0, 8.0))
        growth = engine.grow_dominant_height(18.4, 11, 18.0, 8.0, idf)
        assert growth == pytest.approx(expected)
        assert 0.1 < growth < 0.3

    def test_extension_past_age_limit(self, engine, site_curves, idf):
        """Past breast height age 132 growth halves every 20 years."""
        limit_height = site_curves.height_from_age(11, 132.0, AT_BREAST, 18.0, 8.0)
        rate = site_curves.height_from_age(11, 133.0, AT_BREAST, 18.0, 8.0) - limit_height
        growth = engine.grow_dominant_height(limit_height + 0.05, 11, 18.0, 8.0, idf)
        assert 0.0 < growth < rate

    def test_extension_stops(self, engine, site_curves, idf):
        limit_height = site_curves.height_from_age(11, 132.0, AT_BREAST, 18.0, 8.0)
        assert engine.grow_dominant_height(limit_height + 0.45, 11, 18.0, 8.0, idf) == 0.0

    def test_without_age_limit(self, tables, fixed_age_site_curves, idf):
        engine = ForwardProcessingEngine(tables, fixed_age_site_curves(10.0))
        assert engine.grow_dominant_height(4.3, 1, 18.0, 5.0, idf) == pytest.approx(0.3)

    def test_extension_needs_an_age_limit(self, tables, fixed_age_site_curves, idf):
        """A curve with extension parameters but no age limit grows along the curve."""
        unlimited = CoefficientMap(
            'site_curve_age_maximums', {(1,): SiteCurveAgeMaximum(0.0, 0.0, 20.0, 60.0)},
            SiteCurveAgeMaximum(),
        )
        engine = ForwardProcessingEngine(
            dataclasses.replace(tables, site_curve_age_maximums=unlimited),
            fixed_age_site_curves(10.0),
        )
        assert engine.grow_dominant_height(4.3, 1, 18.0, 5.0, idf) == pytest.approx(0.3)

    def test_taller_than_site_index_at_no_age(self, tables, fixed_age_site_curves, idf):
        engine = ForwardProcessingEngine(tables, fixed_age_site_curves(-1.0))
        assert engine.grow_dominant_height(20.0, 1, 18.0, 5.0, idf) == 0.0
        with pytest.raises(ProcessingError):
            engine.grow_dominant_height(15.0, 1, 18.0, 5.0, idf)

    @pytest.mark.parametrize("dominant_height,curve", [
        pytest.param(1.3, 11, id="at breast height"),
        pytest.param(18.4, NO_CURVE, id="no curve"),
        pytest.param(30.0, 11, id="beyond asymptote"),
    ])
    def test_errors(self, engine, idf, dominant_height, curve):
        with pytest.raises(ProcessingError):
            engine.grow_dominant_height(dominant_height, curve, 18.0, 8.0, idf)


class TestGrowBasalArea:
    """Tests for one year of layer basal area growth."""

    def test_growth(self, engine, idf):
        growth = engine.grow_basal_area(SAMPLE_RANKING, idf, 52.0, 18.4, 30.0, 1789.42, None, 0.177)
        assert 0.0 < growth < 1.0

    def test_above_upper_bound(self, engine, idf):
        assert engine.grow_basal_area(
            SAMPLE_RANKING, idf, 52.0, 18.4, 80.0, 1789.42, None, 0.177
        ) == 0.0

    def test_diameter_bound(self, engine, idf):
        """Large trees at their diameter bound add no basal area."""
        growth = engine.grow_basal_area(SAMPLE_RANKING, idf, 52.0, 18.4, 30.0, 200.0, None, 0.177)
        assert growth == pytest.approx(0.0, abs=1e-9)


class TestProjection:
    """Tests for full projections."""

    def test_reports_every_year(self, engine, sample_polygon):
        trajectory = GrowthTrajectory()
        engine.process_polygon(sample_polygon, sink=trajectory)
        assert trajectory.years == list(range(2013, 2024))

    def test_polygon_target_year(self, tables, site_curves, make_polygon):
        engine = ForwardProcessingEngine(
            tables, site_curves, ForwardControlVariables(grow_target=-1)
        )
        trajectory = GrowthTrajectory()
        engine.process_polygon(make_polygon(target_year=2016), sink=trajectory)
        assert trajectory.years == [2013, 2014, 2015, 2016]

    def test_grown_state(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon)
        bank = state.bank
        assert state.primary_details.total_age == 70.0
        assert state.primary_details.years_at_breast_height == 62.0
        assert list(bank.age_totals[1:]) == [70.0, 75.0]
        assert bank.dominant_heights[1] == pytest.approx(state.primary_details.dominant_height)
        assert bank.dominant_heights[1] > 18.4
        assert bank.basal_areas[0, ALL] > 30.0

    def test_grown_bank_is_consistent(self, engine, sample_polygon):
        _assert_bank_consistent(engine.process_polygon(sample_polygon).bank)

    def test_layer_growth_is_monotonic(self, engine, sample_polygon):
        trajectory = GrowthTrajectory()
        engine.process_polygon(sample_polygon, sink=trajectory)
        totals = trajectory.layer_totals()
        assert totals['basal_area'].is_monotonic_increasing
        assert totals['whole_stem_volume'].iloc[-1] > totals['whole_stem_volume'].iloc[1]

    def test_deterministic(self, engine, sample_polygon):
        runs = []
        for _ in range(2):
            trajectory = GrowthTrajectory()
            engine.process_polygon(sample_polygon, sink=trajectory)
            runs.append(trajectory.to_dataframe())
        pd.testing.assert_frame_equal(runs[0], runs[1])

    def test_stepping_matches_full_run(self, engine, sample_polygon):
        """Calling grow year by year reproduces process_polygon."""
        full = engine.process_polygon(sample_polygon)

        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        for year in range(2013, 2023):
            result = engine.grow(state, year)
            assert result.year == year + 1
            state.bank = result.bank
            state.set_primary_details(
                state.primary_details.grown(result.dominant_height_growth)
            )
        for name in UTILIZATION_ATTRIBUTES:
            np.testing.assert_allclose(getattr(state.bank, name), getattr(full.bank, name))

    def test_grow_does_not_modify_source(self, engine, sample_polygon):
        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        before = state.bank.copy()
        result = engine.grow(state, 2013)
        assert result.bank is not state.bank
        for name in UTILIZATION_ATTRIBUTES:
            np.testing.assert_array_equal(getattr(state.bank, name), getattr(before, name))

    def test_update_during_growth(self, tables, site_curves, sample_polygon):
        engine = ForwardProcessingEngine(
            tables, site_curves, ForwardControlVariables(update_during_growth=True)
        )
        state = engine.process_polygon(sample_polygon)
        assert state.primary_details.total_age == 70.0
        _assert_bank_consistent(state.bank)

    def test_update_during_growth_does_not_modify_source(self, tables, site_curves,
                                                          sample_polygon):
        engine = ForwardProcessingEngine(
            tables, site_curves, ForwardControlVariables(update_during_growth=True)
        )
        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        result = engine.grow(state, 2013)
        state.bank = result.bank
        state.set_primary_details(state.primary_details.grown(result.dominant_height_growth))
        state.bank.percentages_of_forested_land[1:] = [50.0, 50.0]

        grown = engine.grow(state, 2014).bank
        np.testing.assert_array_equal(state.bank.percentages_of_forested_land[1:], [50.0, 50.0])
        np.testing.assert_allclose(grown.percentages_of_forested_land[1:], [70.0, 30.0])

    def test_layer_density_follows_the_bands(self, engine, sample_polygon):
        """After a year each species' density is the sum of its band densities."""
        state = engine.process_polygon(sample_polygon, ExecutionStep.SET_COMPATIBILITY_VARIABLES)
        before = float(state.bank.trees_per_hectare[0, ALL])
        bank = engine.grow(state, 2013).bank

        band_total = sum(
            sum_utilization_components(bank.vector('trees_per_hectare', i)) for i in bank.indices
        )
        assert bank.trees_per_hectare[0, ALL] == pytest.approx(band_total)
        assert bank.trees_per_hectare[0, ALL] == pytest.approx(before, rel=0.01)

    def test_veteran_layer(self, engine, make_species, sample_polygon):
        veteran = Layer(LayerType.VETERAN, [make_species('F', percent_genus=100.0)])
        polygon = Polygon(
            identifier=sample_polygon.identifier,
            year=sample_polygon.year,
            bec_zone='IDF',
            layers={LayerType.PRIMARY: sample_polygon.primary_layer, LayerType.VETERAN: veteran},
        )
        state = engine.process_polygon(polygon)
        assert state.veteran_bank is not None
        assert state.veteran_bank.basal_areas[0, ALL] == pytest.approx(9.0)
        assert state.bank.basal_areas[0, ALL] > 30.0

    def test_engine_is_reusable(self, engine, sample_polygon, make_polygon):
        first = engine.process_polygon(sample_polygon).bank
        engine.process_polygon(make_polygon(year=2000))
        again = engine.process_polygon(sample_polygon).bank
        for name in UTILIZATION_ATTRIBUTES:
            np.testing.assert_array_equal(getattr(first, name), getattr(again, name))
