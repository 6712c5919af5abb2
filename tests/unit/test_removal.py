"""Unit tests for nsink.removal module."""

import dataclasses
import math

import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from models.schemas import OffNetworkParams
from nsink.constants import TYPE_NODATA
from nsink.data_provider import prepare_data
from nsink.errors import InconsistentTopologyError, MissingAttributeError
from nsink.removal import (
    RemovalType,
    _type_nodata,
    compute_removal,
    lake_removal_pct,
    land_removal_pct,
    stream_removal_pct,
)

NETWORK_LAKE = 900


def _prepare(streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid):
    return prepare_data(
        streams=streams,
        lakes=lakes,
        ssurgo=ssurgo,
        fdr=fdr,
        impervious=impervious,
        nlcd=nlcd,
        q=q,
        tot=tot,
        lakemorpho=lakemorpho,
        huc=huc,
        raster_template=grid,
    )


class TestStreamRemoval:
    """Tests for stream_removal_pct."""

    @pytest.mark.parametrize("order", [1, 2, 3, 4, 5, 6, 9])
    def test_zero_travel_time_removes_nothing(self, order):
        assert stream_removal_pct(0.0, 0.3, order) == 0.0

    def test_known_value(self):
        """k = 0.0513 * 0.5 ** -1.319 over one day."""
        k = 0.0513 * 0.5**-1.319
        expected = 100 * (1 - math.exp(-k))
        assert stream_removal_pct(1.0, 0.5, 1) == pytest.approx(expected)

    def test_depth_of_unit_flow(self):
        assert round(stream_removal_pct(1.0, 0.2612, 1), 1) == 26.0

    def test_increases_with_travel_time(self):
        values = [stream_removal_pct(t, 0.4, 2) for t in (0.1, 0.5, 1.0, 5.0)]
        assert values == sorted(values)
        assert values[0] < values[-1]

    def test_decreases_with_depth(self):
        shallow = stream_removal_pct(1.0, 0.2, 2)
        deep = stream_removal_pct(1.0, 2.0, 2)
        assert shallow > deep

    def test_large_rivers_remove_nothing(self):
        assert stream_removal_pct(3.0, 0.5, 6, max_stream_order=5) == 0.0
        assert stream_removal_pct(3.0, 0.5, 5, max_stream_order=5) > 0.0

    def test_bounded(self):
        for totma in (0.0, 0.01, 1.0, 100.0, 1e6):
            for depth in (0.0, 0.01, 0.3, 5.0):
                assert 0.0 <= stream_removal_pct(totma, depth, 1) <= 100.0


class TestLakeRemoval:
    """Tests for lake_removal_pct."""

    def test_known_value(self):
        tau = 1.0e6 / (0.1 * 31_557_600)
        hl = 5.0 / tau
        expected = 79.24 - 33.26 * math.log10(hl)
        assert lake_removal_pct(0.1, 4800.0, 5.0, 1.0e6) == pytest.approx(expected)

    def test_volume_defaults_to_area_times_depth(self):
        explicit = lake_removal_pct(0.05, 1.0e5, 3.0, 3.0e5)
        derived = lake_removal_pct(0.05, 1.0e5, 3.0)
        assert explicit == pytest.approx(derived)

    def test_no_outflow_retains_everything(self):
        assert lake_removal_pct(0.0, 1.0e5, 3.0) == 100.0

    def test_high_hydraulic_load_clipped_to_zero(self):
        assert lake_removal_pct(100.0, 100.0, 1.0) == 0.0

    def test_decreases_with_flow(self):
        low = lake_removal_pct(0.01, 1.0e5, 3.0)
        high = lake_removal_pct(1.0, 1.0e5, 3.0)
        assert low > high


class TestLandRemoval:
    """Tests for land_removal_pct."""

    def test_threshold_and_impervious_override(self):
        hydric = np.array([[80.0, 50.0, 49.0, 100.0]])
        imperv = np.array([[0.0, 0.0, 0.0, 60.0]])
        result = land_removal_pct(hydric, imperv, hydric_threshold=50)
        np.testing.assert_allclose(result, [[100.0, 100.0, 0.0, 40.0]])

    def test_nan_impervious_treated_as_zero(self):
        result = land_removal_pct(np.array([90.0]), np.array([np.nan]))
        assert result[0] == 100.0


class TestComputeRemoval:
    """Tests for compute_removal on the synthetic watershed."""

    def test_network_values_bounded(self, removal_surfaces):
        values = removal_surfaces.network_removal["n_removal"]
        assert ((values >= 0) & (values <= 100)).all()
        assert set(removal_surfaces.segment_removal) == {101, 102, 103, 104}

    def test_zero_travel_time_segment(self, removal_surfaces):
        assert removal_surfaces.segment_removal[104] == 0.0

    def test_stream_segment_value(self, removal_surfaces, prepared_data, settings):
        seg = prepared_data.segments[101]
        expected = stream_removal_pct(
            seg.totma, seg.mean_depth, seg.stream_order, settings.max_removal_stream_order
        )
        assert removal_surfaces.segment_removal[101] == pytest.approx(expected)

    def test_lake_members_share_lake_value(self, removal_surfaces):
        # Lake outflow is the largest member flow (0.12 m3/s on segment 103)
        expected = lake_removal_pct(0.12, 4800.0, 5.0, 1.0e6)
        assert removal_surfaces.lake_removal[NETWORK_LAKE] == pytest.approx(expected)
        assert removal_surfaces.segment_removal[102] == pytest.approx(expected)
        assert removal_surfaces.segment_removal[103] == pytest.approx(expected)

    def test_network_removal_types(self, removal_surfaces):
        table = removal_surfaces.network_removal.set_index("stream_comid")
        assert table.loc[101, "removal_type"] == "stream"
        assert table.loc[102, "removal_type"] == "lake"

    def test_land_surface(self, removal_surfaces):
        land = removal_surfaces.land_removal
        kind = removal_surfaces.land_type.data
        assert land.value_at(0, 0) == 100.0
        assert kind[0, 0] == RemovalType.LAND_HYDRIC
        assert land.value_at(0, 6) == 0.0
        assert kind[0, 6] == RemovalType.LAND_NONE

    def test_impervious_overrides_hydric(self, removal_surfaces):
        assert removal_surfaces.land_removal.value_at(5, 1) == pytest.approx(40.0)
        assert removal_surfaces.land_type.data[5, 1] == RemovalType.LAND_IMPERVIOUS

    def test_off_network_pass_through_by_default(self, removal_surfaces):
        land = removal_surfaces.land_removal
        # Off-network lake and stream on hydric soil
        assert land.value_at(2, 1) == 0.0
        assert land.value_at(8, 2) == 0.0
        assert removal_surfaces.land_type.data[2, 1] == RemovalType.LAND_NONE

    def test_off_network_removal_policy(self, prepared_data, settings):
        params = OffNetworkParams(
            lakes="removal", streams="removal", canalsditches="removal"
        )
        surfaces = compute_removal(prepared_data, params, settings)
        land = surfaces.land_removal
        assert land.value_at(2, 1) == 100.0
        assert land.value_at(8, 2) == 100.0
        # Canal on non-hydric soil
        assert land.value_at(9, 6) == 100.0
        assert surfaces.land_type.data[9, 6] == RemovalType.LAND_HYDRIC

    def test_raster_method_burns_network(self, removal_surfaces):
        removal = removal_surfaces.raster_method["removal"]
        kind = removal_surfaces.raster_method["type"].data
        assert kind[1, 8] == RemovalType.STREAM
        assert removal.value_at(1, 8) == pytest.approx(
            removal_surfaces.segment_removal[101]
        )
        assert kind[5, 8] == RemovalType.LAKE
        assert removal.value_at(5, 8) == pytest.approx(
            removal_surfaces.lake_removal[NETWORK_LAKE]
        )

    def test_raster_values_bounded(self, removal_surfaces):
        raster = removal_surfaces.raster_removal
        values = raster.data[raster.valid_mask]
        assert values.size == 100
        assert ((values >= 0) & (values <= 100)).all()

    def test_land_units_match_polygons(self, removal_surfaces):
        units = removal_surfaces.land_units.data
        polygons = removal_surfaces.land_off_network_removal
        # hydric, impervious cell, off-network lake, off-network stream, east
        assert units.max() == 5
        assert sorted(polygons["unit_id"]) == [1, 2, 3, 4, 5]
        for row in polygons.itertuples():
            n_cells = int((units == row.unit_id).sum())
            assert row.geometry.area == pytest.approx(n_cells * 30.0 * 30.0)

    def test_polygon_removal_matches_raster(self, removal_surfaces):
        units = removal_surfaces.land_units.data
        land = removal_surfaces.land_removal.data
        for row in removal_surfaces.land_off_network_removal.itertuples():
            assert np.all(land[units == row.unit_id] == np.float32(row.n_removal))

    def test_type_layer_labels(self, removal_surfaces):
        labels = set(removal_surfaces.land_off_network_removal_type["removal_type"])
        assert labels == {"land-hydric", "land-impervious", "land-none"}

    def test_type_rasters_share_removal_nodata(self, removal_surfaces):
        nodata = removal_surfaces.raster_removal.nodata
        assert removal_surfaces.raster_type.nodata == nodata
        assert removal_surfaces.land_type.nodata == nodata

    def test_type_rasters_nodata_outside_watershed(self, prepared_data, settings):
        half = dataclasses.replace(prepared_data, huc=box(0, 0, 150, 300))
        surfaces = compute_removal(half, settings=settings)
        assert surfaces.raster_removal.value_at(0, 9) is None
        assert surfaces.raster_type.value_at(0, 9) is None
        assert surfaces.land_type.value_at(0, 9) is None
        assert surfaces.land_type.value_at(0, 0) == float(RemovalType.LAND_HYDRIC)

    @pytest.mark.parametrize(
        "nodata, expected",
        [(-9999.0, -9999), (0.0, TYPE_NODATA), (math.nan, TYPE_NODATA), (1.5, TYPE_NODATA)],
    )
    def test_type_nodata_from_template(self, nodata, expected):
        assert _type_nodata(nodata) == expected

    def test_inputs_not_mutated(self, prepared_data, settings):
        fdr_before = prepared_data.fdr.data.copy()
        imperv_before = prepared_data.impervious.data.copy()
        streams_before = prepared_data.streams.copy()
        compute_removal(prepared_data, settings=settings)
        np.testing.assert_array_equal(prepared_data.fdr.data, fdr_before)
        np.testing.assert_array_equal(prepared_data.impervious.data, imperv_before)
        pd.testing.assert_frame_equal(
            pd.DataFrame(prepared_data.streams.drop(columns="geometry")),
            pd.DataFrame(streams_before.drop(columns="geometry")),
        )


class TestRemovalErrors:
    """Error conditions of compute_removal."""

    def test_missing_travel_time(
        self, streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid, settings
    ):
        tot = tot.copy()
        tot.loc[tot["stream_comid"] == 101, "totma"] = np.nan
        data = _prepare(streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid)
        with pytest.raises(MissingAttributeError, match="101"):
            compute_removal(data, settings=settings)

    def test_missing_flow(
        self, streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid, settings
    ):
        q = q[q["stream_comid"] != 104]
        data = _prepare(streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid)
        with pytest.raises(MissingAttributeError, match="104"):
            compute_removal(data, settings=settings)

    def test_missing_lake_morphology(
        self, streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid, settings
    ):
        data = _prepare(
            streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot,
            lakemorpho.iloc[0:0], huc, grid,
        )
        with pytest.raises(MissingAttributeError, match=str(NETWORK_LAKE)):
            compute_removal(data, settings=settings)

    def test_unknown_lake(
        self, streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid, settings
    ):
        lakes = lakes[lakes["lake_comid"] != NETWORK_LAKE]
        data = _prepare(streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid)
        with pytest.raises(InconsistentTopologyError):
            compute_removal(data, settings=settings)

    def test_missing_attribute_is_key_error(self):
        err = MissingAttributeError("No time of travel for segment 7")
        assert isinstance(err, KeyError)
        assert str(err) == "No time of travel for segment 7"
