"""
Shared test fixtures for pytest.

Provides a small synthetic watershed (10 x 10 cells of 30 m) with a
stream network, one network lake, off-network features, soils and
rasters, plus settings tuned to it.

Layout (rows top to bottom, x = 30 * col, y = 300 - 30 * row)::

    cols 0-4  hydric soil (80 %)      cols 5-9  non-hydric soil (10 %)
    col 8     main channel: 101 -> 102, 103 (lake 900) -> 104 (outlet)
    fdr       east everywhere, south on col 8, west on col 9

Off-network features: lake 901 (row 2, cols 1-2), stream 201
(row 8, cols 1-3) and canal 202 (row 9, cols 6-7). Cell (5, 1) is 60 %
impervious.
"""

import numpy as np
import pandas as pd
import pytest
import geopandas as gpd
from affine import Affine
from shapely.geometry import LineString, box

from nsink.config import Settings
from nsink.constants import CMS_PER_CFS, DEPTH_COEF, DEPTH_EXP
from nsink.data_provider import PreparedData, prepare_data
from nsink.flow_network import NetworkGraph, build_graph
from nsink.grid import Raster, RasterGrid
from nsink.removal import RemovalSurfaces, compute_removal

CRS = "EPSG:5072"
CELL = 30.0
SIZE = 10

NETWORK_LAKE = 900
OFF_NETWORK_LAKE = 901


@pytest.fixture
def settings() -> Settings:
    """Settings with a narrow stream buffer (stays inside column 8)."""
    return Settings(
        stream_buffer_m=5.0,
        max_overland_steps=1000,
        min_sample_count=3,
        idw_neighbors=4,
        n_workers=1,
        random_seed=42,
    )


@pytest.fixture
def grid() -> RasterGrid:
    return RasterGrid(
        transform=Affine(CELL, 0.0, 0.0, 0.0, -CELL, SIZE * CELL),
        width=SIZE,
        height=SIZE,
        crs=CRS,
    )


@pytest.fixture
def huc():
    return box(0, 0, SIZE * CELL, SIZE * CELL)


@pytest.fixture
def streams() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "stream_comid": [101, 102, 103, 104, 201, 202],
            "lake_comid": pd.array(
                [pd.NA, NETWORK_LAKE, NETWORK_LAKE, pd.NA, pd.NA, pd.NA],
                dtype="Int64",
            ),
            "ftype": [
                "StreamRiver",
                "ArtificialPath",
                "ArtificialPath",
                "StreamRiver",
                "StreamRiver",
                "CanalDitch",
            ],
            "geometry": [
                LineString([(255, 300), (255, 200)]),
                LineString([(255, 200), (255, 100)]),
                LineString([(255, 100), (255, 60)]),
                LineString([(255, 60), (255, 0)]),
                LineString([(45, 50), (105, 50)]),
                LineString([(195, 20), (225, 20)]),
            ],
        },
        crs=CRS,
    )


@pytest.fixture
def lakes() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "lake_comid": [NETWORK_LAKE, OFF_NETWORK_LAKE],
            "ftype": ["LakePond", "LakePond"],
            "geometry": [box(235, 70, 275, 190), box(35, 215, 85, 235)],
        },
        crs=CRS,
    )


@pytest.fixture
def ssurgo() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "mukey": ["1001", "1002"],
            "hydricrating": ["Yes", "Yes"],
            "hydric_pct": [80.0, 10.0],
            "geometry": [box(0, 0, 150, 300), box(150, 0, 300, 300)],
        },
        crs=CRS,
    )


@pytest.fixture
def tot() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "stream_comid": [101, 102, 103, 104],
            "totma": [1.0, 0.5, 0.2, 0.0],
            "fromnode": [1, 2, 3, 4],
            "tonode": [2, 3, 4, 5],
            "stream_order": [1, 1, 1, 2],
        }
    )


@pytest.fixture
def q() -> pd.DataFrame:
    q_cms = np.array([0.1, 0.1, 0.12, 0.15])
    return pd.DataFrame(
        {
            "stream_comid": [101, 102, 103, 104],
            "q_cms": q_cms,
            "mean_reach_depth": DEPTH_COEF * q_cms**DEPTH_EXP,
        }
    )


@pytest.fixture
def lakemorpho() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "lake_comid": [NETWORK_LAKE],
            "meandepth": [5.0],
            "lakevolume": [1.0e6],
            "maxdepth": [10.0],
            "lakearea": [4800.0],
        }
    )


@pytest.fixture
def fdr(grid) -> Raster:
    data = np.full(grid.shape, 1, dtype=np.int16)  # E
    data[:, 8] = 4  # S along the channel
    data[:, 9] = 16  # W back into the channel
    return Raster(data, grid, nodata=None)


@pytest.fixture
def impervious(grid) -> Raster:
    data = np.zeros(grid.shape, dtype=np.float32)
    data[5, 1] = 60.0
    return Raster(data, grid, nodata=None)


@pytest.fixture
def nlcd(grid) -> Raster:
    data = np.full(grid.shape, 82, dtype=np.uint8)  # cultivated crops
    data[:, :5] = 41  # deciduous forest
    return Raster(data, grid, nodata=None)


@pytest.fixture
def prepared_data(
    streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc, grid
) -> PreparedData:
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


@pytest.fixture
def removal_surfaces(prepared_data, settings) -> RemovalSurfaces:
    return compute_removal(prepared_data, settings=settings)


@pytest.fixture
def graph(prepared_data) -> NetworkGraph:
    return build_graph(prepared_data.segments, prepared_data.lakes_by_id)


@pytest.fixture
def prepared_folder(
    tmp_path, streams, lakes, ssurgo, fdr, impervious, nlcd, q, tot, lakemorpho, huc
):
    """The synthetic watershed written as a prepared data folder."""
    from nsink.raster_io import save_raster_geotiff

    folder = tmp_path / "prepared"
    folder.mkdir()
    gpd.GeoDataFrame({"huc12": ["010900020101"]}, geometry=[huc], crs=CRS).to_file(
        folder / "huc.gpkg"
    )
    streams.assign(
        lake_comid=streams["lake_comid"].fillna(0).astype(np.int64)
    ).to_file(folder / "streams.gpkg")
    lakes.to_file(folder / "lakes.gpkg")
    ssurgo.to_file(folder / "ssurgo.gpkg")
    save_raster_geotiff(fdr, folder / "fdr.tif", dtype="int16")
    save_raster_geotiff(impervious, folder / "impervious.tif")
    save_raster_geotiff(nlcd, folder / "nlcd.tif", dtype="uint8")
    q.to_csv(folder / "q.csv", index=False)
    tot.to_csv(folder / "tot.csv", index=False)
    lakemorpho.to_csv(folder / "lakemorpho.csv", index=False)
    return folder


@pytest.fixture
def raw_layers(streams, lakes, q, tot, lakemorpho, huc, fdr, impervious, nlcd) -> dict:
    """The synthetic watershed as raw NHDPlus/SSURGO inputs (upper-case columns)."""
    flowlines = gpd.GeoDataFrame(
        {
            "COMID": streams["stream_comid"],
            "WBAREACOMI": streams["lake_comid"].fillna(0).astype(np.int64),
            "FTYPE": streams["ftype"],
            "LENGTHKM": streams.geometry.length / 1000.0,
            "Shape_Leng": streams.geometry.length,
        },
        geometry=streams.geometry,
        crs=CRS,
    )
    waterbodies = gpd.GeoDataFrame(
        {"COMID": lakes["lake_comid"], "FTYPE": lakes["ftype"]},
        geometry=lakes.geometry,
        crs=CRS,
    )
    mapunits = gpd.GeoDataFrame(
        {"MUKEY": ["1001", "1002"], "MUSYM": ["Aa", "Bb"]},
        geometry=[box(0, 0, 150, 300), box(150, 0, 300, 300)],
        crs=CRS,
    )
    components = pd.DataFrame(
        {
            "mukey": ["1001", "1001", "1002", "1002"],
            "hydricrating": ["Yes", "No", "Yes", "No"],
            "comppct.r": [80, 20, 10, 90],
            "compname": ["Peat", "Loam", "Muck", "Loam"],
            "drainagecl": ["Poorly", "Well", "Poorly", "Well"],
        }
    )
    erom = pd.DataFrame(
        {"ComID": q["stream_comid"], "Q0001E": q["q_cms"] / CMS_PER_CFS}
    )
    vaa = pd.DataFrame(
        {
            "ComID": tot["stream_comid"],
            "TotMA": tot["totma"],
            "FromNode": tot["fromnode"],
            "ToNode": tot["tonode"],
            "StreamOrde": tot["stream_order"],
        }
    )
    lakemorpho_table = pd.DataFrame(
        {
            "COMID": lakemorpho["lake_comid"],
            "MeanDepth": lakemorpho["meandepth"],
            "LakeVolume": lakemorpho["lakevolume"],
            "MaxDepth": lakemorpho["maxdepth"],
            "MeanDUsed": lakemorpho["meandepth"],
            "MeanDCode": ["A"],
            "LakeArea": lakemorpho["lakearea"],
        }
    )
    return dict(
        huc=gpd.GeoDataFrame({"huc12": ["010900020101"]}, geometry=[huc], crs=CRS),
        flowlines=flowlines,
        waterbodies=waterbodies,
        mapunits=mapunits,
        components=components,
        erom=erom,
        vaa=vaa,
        lakemorpho_table=lakemorpho_table,
        fdr=fdr,
        impervious=impervious,
        nlcd=nlcd,
    )
