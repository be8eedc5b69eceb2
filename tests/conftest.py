"""
Shared fixtures for the coarse2fine tests.

Rasters are written with rasterio into tmp_path. The r.avaflow engine
is replaced by FakeEngine, which writes the maximum flow height grid
where the real engine would.
"""

import os

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from run_avaflow_03 import fn_hmax_path

COARSE_X0 = 1000.0
COARSE_Y0 = 2000.0
COARSE_CELL = 5.0
COARSE_SHAPE = (40, 40)
FINE_CELL = 1.0


def write_tif(path, data, x0, y0, cell, nodata=-9999.0):
    """Write a single band float32 GeoTIFF."""
    data = np.asarray(data, dtype=np.float32)
    with rasterio.open(
        path, "w", driver="GTiff",
        height=data.shape[0], width=data.shape[1], count=1,
        dtype="float32", transform=from_origin(x0, y0, cell, cell),
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
    return str(path)


def write_asc(path, data, x0, y0, cell, nodata=-9999.0):
    """Write an ESRI ASCII grid (the format r.avaflow exports)."""
    data = np.asarray(data, dtype=float)
    nrows, ncols = data.shape
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(f"ncols {ncols}\n")
        f.write(f"nrows {nrows}\n")
        f.write(f"xllcorner {x0}\n")
        f.write(f"yllcorner {y0 - nrows * cell}\n")
        f.write(f"cellsize {cell}\n")
        f.write(f"NODATA_value {nodata}\n")
        for row in data:
            f.write(" ".join(f"{v:.4f}" for v in row) + "\n")
    return str(path)


def flow_hmax():
    """Coarse max flow height with a 3 x 4 block of flow at rows 10-12, cols 15-18."""
    hmax = np.zeros(COARSE_SHAPE)
    hmax[10:13, 15:19] = 0.5
    return hmax


class FakeEngine:
    """Stands in for run_avaflow_03.fn_run_avaflow and records each call."""

    def __init__(self, coarse_hmax=None, fail_stage=None):
        self.coarse_hmax = flow_hmax() if coarse_hmax is None else coarse_hmax
        self.fail_stage = fail_stage
        self.calls = []

    def __call__(self, stage_config, str_elevation, str_hydrograph,
                 dict_all_params, str_work_folder, b_print_output):
        from c2f_errors import EngineRunError

        self.calls.append({
            "stage": stage_config.stage,
            "config": stage_config,
            "elevation": str_elevation,
            "hydrograph": str_hydrograph,
        })

        if stage_config.stage == self.fail_stage:
            raise EngineRunError(f"{stage_config.stage} simulation", 2, "segmentation fault")

        str_hmax = fn_hmax_path(str_work_folder, stage_config.prefix)
        if stage_config.stage == "coarse":
            write_asc(str_hmax, self.coarse_hmax, COARSE_X0, COARSE_Y0, COARSE_CELL)
        else:
            write_asc(str_hmax, np.ones((2, 2)), COARSE_X0, COARSE_Y0, FINE_CELL)
        return str_hmax

    @property
    def stages(self):
        return [call["stage"] for call in self.calls]


@pytest.fixture
def hydrograph_file(tmp_path):
    path = tmp_path / "hydrograph.txt"
    path.write_text("time\tdischarge\tvelocity\n0\t10\t2\n50\t20\t2\n100\t15\t2\n")
    return str(path)


@pytest.fixture
def coarse_dem(tmp_path):
    rows, cols = COARSE_SHAPE
    data = 500.0 - np.add.outer(np.arange(rows), np.arange(cols)).astype(float)
    return write_tif(tmp_path / "dtm_5m.tif", data, COARSE_X0, COARSE_Y0, COARSE_CELL)


@pytest.fixture
def fine_dem(tmp_path):
    rows, cols = COARSE_SHAPE[0] * 5, COARSE_SHAPE[1] * 5
    data = 500.0 - 0.2 * np.add.outer(np.arange(rows), np.arange(cols)).astype(float)
    return write_tif(tmp_path / "dtm_1m.tif", data, COARSE_X0, COARSE_Y0, FINE_CELL)


@pytest.fixture
def all_params(tmp_path, coarse_dem, fine_dem, hydrograph_file):
    """Combined GLOBAL + LOCAL parameters as fn_read_all_params returns them."""
    return {
        "flow_thresh": "0.005",
        "buffer_cells": "2",
        "cell_coarse": "5",
        "time_coarse": "50,700",
        "cfl_coarse": "0.50,0.005",
        "thresholds_coarse": "0.05,10000,10000,1.0,0.000001",
        "visualization_coarse": "0,0.05,5.0,5.0,1,100,2,-11000,9000,100,0.60,0.25,0.15,0.2,1.0,None,None,None",
        "cstopping_coarse": "1",
        "cell_fine": "1",
        "time_fine": "50,700",
        "cfl_fine": "0.50,0.005",
        "thresholds_fine": "0.05,10000,10000,1.0,0.000001",
        "visualization_fine": "0,0.05,5.0,5.0,1,100,2,-11000,9000,100,0.60,0.25,0.15,0.2,1.0,None,None,None",
        "cstopping_fine": "1",
        "executable": "r.avaflow.40G",
        "flags": "-e -v",
        "import_command": "r.in.gdal",
        "region_command": "g.region",
        "timeout_seconds": "",
        "run_name": "wc_1phase",
        "out_root_folder": str(tmp_path / "output"),
        "dtm_coarse": coarse_dem,
        "dtm_fine": fine_dem,
        "hydrograph": hydrograph_file,
        "hydrocoords": "1080.0,1945.0,20,-9999",
        "profile": "1080.0,1945.0,1100.0,1930.0",
        "phases": "1",
        "flow_classes": "2",
        "volume_multipliers": "1.0",
        "max_workers": "1",
    }


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def engine_factory():
    return FakeEngine


@pytest.fixture
def tif_writer():
    return write_tif


@pytest.fixture
def asc_writer():
    return write_asc
