# ************************************************************
# COARSE2FINE
# Module - raster_grid
#
# In-memory raster used between the pipeline steps and the
# rasterio read / write helpers for it.
# ************************************************************

# ************************************************************
from dataclasses import dataclass

import numpy as np
import rasterio
from rasterio.transform import Affine
# ************************************************************

FLT_DEFAULT_NODATA = -9999.0


# -----------------
@dataclass
class RasterGrid:
    """
    Axis-aligned, north-up raster with square cells.

    Every cell is either a finite value or exactly ``nodata``.
    The affine ``transform`` fully determines the coordinate to
    index mapping.
    """
    data: np.ndarray
    transform: Affine
    nodata: float = FLT_DEFAULT_NODATA
    crs: object = None

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ValueError(f"Raster data must be 2-D, got shape {self.data.shape}")
        if self.transform.b != 0 or self.transform.d != 0:
            raise ValueError("Rotated rasters are not supported")
        if self.transform.e >= 0:
            raise ValueError("Raster must be north-up (negative y cell size)")
        if not np.isclose(abs(self.transform.a), abs(self.transform.e)):
            raise ValueError(
                f"Raster cells must be square, got {self.transform.a} x {abs(self.transform.e)}"
            )

        if self.nodata is None or np.isnan(self.nodata):
            self.nodata = FLT_DEFAULT_NODATA
        self.nodata = float(self.nodata)

        # normalise NaN / inf to the sentinel
        self.data = np.where(np.isfinite(self.data), self.data, self.nodata).astype(np.float64)

    @property
    def origin(self):
        return (self.transform.c, self.transform.f)

    @property
    def cell_size(self):
        return abs(self.transform.a)

    @property
    def rows(self):
        return self.data.shape[0]

    @property
    def cols(self):
        return self.data.shape[1]

    @property
    def extent(self):
        # (min_x, min_y, max_x, max_y)
        flt_x0, flt_y0 = self.origin
        return (
            flt_x0,
            flt_y0 - self.rows * self.cell_size,
            flt_x0 + self.cols * self.cell_size,
            flt_y0
        )

    @property
    def valid(self):
        return self.data != self.nodata
# -----------------


# ----------------
def fn_read_raster_grid(str_raster_path):
    # GeoTIFF and ESRI ASCII (.asc) both come through GDAL
    with rasterio.open(str_raster_path) as src:
        data = src.read(1).astype(np.float64)
        nodata = src.nodata
        transform = src.transform
        crs = src.crs

    return RasterGrid(data=data, transform=transform, nodata=nodata, crs=crs)
# ----------------


# ----------------
def fn_write_raster_grid(grid, str_raster_path):
    out_meta = {
        "driver": "GTiff",
        "height": grid.rows,
        "width": grid.cols,
        "count": 1,
        "dtype": "float32",
        "transform": grid.transform,
        "nodata": grid.nodata,
        "compress": "LZW",
    }
    if grid.crs is not None:
        out_meta["crs"] = grid.crs

    with rasterio.open(str_raster_path, "w", **out_meta) as dest:
        dest.write(grid.data.astype(np.float32), 1)

    return str_raster_path
# ----------------
