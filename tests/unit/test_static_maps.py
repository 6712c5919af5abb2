"""Unit tests for nsink.static_maps module."""

import dataclasses
from types import MappingProxyType

import numpy as np
import pytest
from shapely.geometry import Point, box

from nsink.errors import GridMismatchError, InsufficientSampleError, MissingAttributeError
from nsink.grid import Raster, RasterGrid
from nsink.static_maps import (
    _trace_samples,
    generate_static_maps,
    idw_interpolate,
    land_area,
    stratified_sample_points,
)


class TestSampling:
    """Tests for stratified sampling."""

    def test_points_inside_polygon(self):
        area = box(0, 0, 100, 50)
        points = stratified_sample_points(area, 20, np.random.default_rng(1))
        assert points.shape == (20, 2)
        assert all(area.contains(Point(x, y)) for x, y in points)

    def test_reproducible(self):
        area = box(0, 0, 300, 300).difference(box(100, 100, 200, 200))
        a = stratified_sample_points(area, 15, np.random.default_rng(7))
        b = stratified_sample_points(area, 15, np.random.default_rng(7))
        np.testing.assert_array_equal(a, b)

    def test_spread_over_area(self):
        area = box(0, 0, 100, 100)
        points = stratified_sample_points(area, 16, np.random.default_rng(3))
        # Every quadrant gets at least one point
        for qx in (0, 50):
            for qy in (0, 50):
                in_quadrant = (
                    (points[:, 0] >= qx)
                    & (points[:, 0] < qx + 50)
                    & (points[:, 1] >= qy)
                    & (points[:, 1] < qy + 50)
                )
                assert in_quadrant.any()

    def test_zero_points(self):
        points = stratified_sample_points(box(0, 0, 1, 1), 0, np.random.default_rng())
        assert points.shape == (0, 2)

    def test_land_area_excludes_network_lakes(self, prepared_data):
        area = land_area(prepared_data)
        assert not area.contains(Point(255, 150))
        # Off-network lake stays part of the sampled land
        assert area.contains(Point(60, 225))


class TestIdw:
    """Tests for inverse distance weighting."""

    def test_exact_hit(self):
        samples = np.array([[0.0, 0.0], [10.0, 0.0]])
        result = idw_interpolate(samples, np.array([20.0, 80.0]), np.array([[0.0, 0.0]]))
        assert result[0] == 20.0

    def test_midpoint_is_mean(self):
        samples = np.array([[0.0, 0.0], [10.0, 0.0]])
        result = idw_interpolate(samples, np.array([20.0, 80.0]), np.array([[5.0, 0.0]]))
        assert result[0] == pytest.approx(50.0)

    def test_nearer_sample_weighs_more(self):
        samples = np.array([[0.0, 0.0], [10.0, 0.0]])
        result = idw_interpolate(samples, np.array([20.0, 80.0]), np.array([[2.0, 0.0]]))
        assert 20.0 < result[0] < 50.0

    def test_single_sample(self):
        result = idw_interpolate(
            np.array([[0.0, 0.0]]), np.array([42.0]), np.array([[5.0, 5.0], [9.0, 1.0]])
        )
        np.testing.assert_allclose(result, [42.0, 42.0])

    def test_bounded_by_sample_values(self):
        rng = np.random.default_rng(0)
        samples = rng.uniform(0, 100, (30, 2))
        values = rng.uniform(10, 90, 30)
        targets = rng.uniform(0, 100, (200, 2))
        result = idw_interpolate(samples, values, targets, neighbors=8)
        assert result.min() >= values.min()
        assert result.max() <= values.max()


class TestGenerateStaticMaps:
    """Tests for generate_static_maps on the synthetic watershed."""

    def test_zero_density_rejected(self, prepared_data, removal_surfaces, settings):
        with pytest.raises(InsufficientSampleError):
            generate_static_maps(prepared_data, removal_surfaces, 0, seed=1, settings=settings)

    def test_too_few_successes(self, prepared_data, removal_surfaces, settings):
        strict = settings.model_copy(update={"min_sample_count": 50})
        with pytest.raises(InsufficientSampleError, match="at least 50"):
            generate_static_maps(prepared_data, removal_surfaces, 10, seed=1, settings=strict)

    def test_same_seed_same_transport(self, prepared_data, removal_surfaces, settings):
        a = generate_static_maps(prepared_data, removal_surfaces, 12, seed=5, settings=settings)
        b = generate_static_maps(prepared_data, removal_surfaces, 12, seed=5, settings=settings)
        np.testing.assert_array_equal(a.transport_idx.data, b.transport_idx.data)

    def test_threads_match_sequential(self, prepared_data, removal_surfaces, settings):
        threaded = settings.model_copy(update={"n_workers": 4})
        a = generate_static_maps(prepared_data, removal_surfaces, 12, seed=5, settings=settings)
        b = generate_static_maps(prepared_data, removal_surfaces, 12, seed=5, settings=threaded)
        np.testing.assert_array_equal(a.transport_idx.data, b.transport_idx.data)
        assert [s.x for s in a.samples] == [s.x for s in b.samples]

    def test_maps_share_template(self, prepared_data, removal_surfaces, settings):
        maps = generate_static_maps(prepared_data, removal_surfaces, 12, seed=3, settings=settings)
        for raster in maps.as_dict().values():
            assert raster.grid.matches(prepared_data.raster_template)
            assert raster.nodata == prepared_data.raster_template.nodata

    def test_value_ranges(self, prepared_data, removal_surfaces, settings):
        maps = generate_static_maps(prepared_data, removal_surfaces, 12, seed=3, settings=settings)
        for raster in maps.as_dict().values():
            values = raster.data[raster.valid_mask]
            assert values.size > 0
            assert ((values >= 0) & (values <= 100)).all()

    def test_removal_effic_from_surfaces(self, prepared_data, removal_surfaces, settings):
        maps = generate_static_maps(prepared_data, removal_surfaces, 12, seed=3, settings=settings)
        np.testing.assert_array_equal(
            maps.removal_effic.data, removal_surfaces.raster_removal.data
        )

    def test_loading_from_land_cover(self, prepared_data, removal_surfaces, settings):
        maps = generate_static_maps(prepared_data, removal_surfaces, 12, seed=3, settings=settings)
        assert maps.loading_idx.value_at(0, 0) == 5.0  # deciduous forest
        assert maps.loading_idx.value_at(0, 9) == 90.0  # cultivated crops

    def test_delivery_is_product(self, prepared_data, removal_surfaces, settings):
        maps = generate_static_maps(prepared_data, removal_surfaces, 12, seed=3, settings=settings)
        valid = maps.delivery_idx.valid_mask
        np.testing.assert_allclose(
            maps.delivery_idx.data[valid],
            maps.loading_idx.data[valid] * maps.transport_idx.data[valid] / 100.0,
            rtol=1e-5,
        )

    def test_report(self, prepared_data, removal_surfaces, settings):
        maps = generate_static_maps(prepared_data, removal_surfaces, 12, seed=3, settings=settings)
        report = maps.to_report(seed=3)
        assert report.requested_samples == 12
        assert report.traced_samples == len(maps.samples)
        assert [r.name for r in report.rasters] == [
            "removal_effic",
            "loading_idx",
            "transport_idx",
            "delivery_idx",
        ]

    def test_grid_mismatch(self, prepared_data, removal_surfaces, settings):
        shifted = RasterGrid.from_bounds(30, 0, 330, 300, 30, "EPSG:5072")
        bad = Raster(removal_surfaces.raster_removal.data, shifted, -9999.0)
        surfaces = dataclasses.replace(removal_surfaces, raster_removal=bad)
        with pytest.raises(GridMismatchError):
            generate_static_maps(prepared_data, surfaces, 12, seed=3, settings=settings)


class TestSampleExclusion:
    """Points that cannot be traced are dropped, not fatal."""

    def test_out_of_bounds_point_excluded(
        self, prepared_data, removal_surfaces, graph, settings, caplog
    ):
        points = np.array([[15.0, 255.0], [-50.0, -50.0], [285.0, 15.0]])
        with caplog.at_level("WARNING"):
            samples = _trace_samples(points, prepared_data, removal_surfaces, graph, settings)
        assert [(s.x, s.y) for s in samples] == [(15.0, 255.0), (285.0, 15.0)]
        assert "excluded" in caplog.text

    def test_unreachable_point_excluded(
        self, prepared_data, removal_surfaces, graph, settings, caplog
    ):
        data = prepared_data.fdr.data.copy()
        data[0, :8] = 64  # north, off the top edge
        fdr = Raster(data, prepared_data.raster_template, nodata=None)
        broken = dataclasses.replace(prepared_data, fdr=fdr)
        points = np.array([[15.0, 285.0], [285.0, 15.0]])
        with caplog.at_level("WARNING"):
            samples = _trace_samples(points, broken, removal_surfaces, graph, settings)
        assert [(s.x, s.y) for s in samples] == [(285.0, 15.0)]
        assert "excluded" in caplog.text
        assert "left the raster" in caplog.text

    @pytest.mark.parametrize("n_workers", [1, 3])
    def test_missing_removal_aborts_run(
        self, prepared_data, removal_surfaces, settings, n_workers
    ):
        partial = {k: v for k, v in removal_surfaces.segment_removal.items() if k != 104}
        surfaces = dataclasses.replace(
            removal_surfaces, segment_removal=MappingProxyType(partial)
        )
        run_settings = settings.model_copy(update={"n_workers": n_workers})
        with pytest.raises(MissingAttributeError, match="104"):
            generate_static_maps(prepared_data, surfaces, 12, seed=3, settings=run_settings)
