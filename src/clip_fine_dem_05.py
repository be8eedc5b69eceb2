# ************************************************************
# COARSE2FINE
# Script 05 - clip_fine_dem_05
#
# Restricts the fine resolution DEM to the buffered flow
# footprint of the coarse run. Only the window of the fine DEM
# around the footprint is ever read.
# ************************************************************

# ************************************************************
from dataclasses import dataclass

import numpy as np
import rasterio
from rasterio.enums import Resampling
from rasterio.transform import from_origin
from rasterio.windows import from_bounds

from c2f_errors import CoverageGap, FootprintEmpty
from raster_grid import RasterGrid, fn_write_raster_grid
from build_flow_mask_04 import fn_marked
# ************************************************************

INT_SNAP_DECIMALS = 9


# -----------------
@dataclass(frozen=True)
class ClipExtent:
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    resolution: float

    @property
    def cols(self):
        return int(round((self.max_x - self.min_x) / self.resolution))

    @property
    def rows(self):
        return int(round((self.max_y - self.min_y) / self.resolution))

    @property
    def cells(self):
        return self.rows * self.cols

    @property
    def transform(self):
        return from_origin(self.min_x, self.max_y, self.resolution, self.resolution)

    @property
    def bounds(self):
        return (self.min_x, self.min_y, self.max_x, self.max_y)
# -----------------


# -----------------
class WorkingRegion:
    """
    Active computational region of one workflow instance.

    Plays the part of the GRASS g.region setting, but as an object
    handed to the clipper so concurrent workflows never share one.
    Setting the same extent twice leaves the region unchanged.
    """

    def __init__(self, extent=None):
        self.extent = extent

    def set_region(self, extent):
        self.extent = extent
        return self.extent

    @property
    def cells(self):
        return 0 if self.extent is None else self.extent.cells
# -----------------


# -----------------
@dataclass
class ClipResult:
    grid: RasterGrid
    clip_extent: ClipExtent
    tight_extent: ClipExtent
    cell_count: int
    output_path: str = ''
# -----------------


# ----------------
def fn_mask_bounds(mask):
    # (min_x, min_y, max_x, max_y) of the marked cells
    bool_marked = fn_marked(mask)
    if not bool_marked.any():
        raise FootprintEmpty()

    arr_rows = np.flatnonzero(bool_marked.any(axis=1))
    arr_cols = np.flatnonzero(bool_marked.any(axis=0))

    flt_x0, flt_y0 = mask.origin
    flt_cs = mask.cell_size

    return (
        flt_x0 + arr_cols[0] * flt_cs,
        flt_y0 - (arr_rows[-1] + 1) * flt_cs,
        flt_x0 + (arr_cols[-1] + 1) * flt_cs,
        flt_y0 - arr_rows[0] * flt_cs
    )
# ----------------


# ----------------
def fn_snap(flt_value, flt_anchor, flt_resolution, fn_round):
    # round the cell count first so 4.999999999 snaps to 5, not 4
    flt_steps = round((flt_value - flt_anchor) / flt_resolution, INT_SNAP_DECIMALS)
    return round(flt_anchor + fn_round(flt_steps) * flt_resolution, INT_SNAP_DECIMALS)
# ----------------


# ----------------
def fn_align_extent(tuple_bounds, flt_resolution, tuple_anchor):
    """
    Snap bounds outward onto the grid of ``flt_resolution`` anchored at
    ``tuple_anchor`` (the coarse grid origin). The result always
    contains the input bounds.
    """
    flt_resolution = float(flt_resolution)
    if flt_resolution <= 0:
        raise ValueError(f"Fine resolution must be > 0, got {flt_resolution}")

    min_x, min_y, max_x, max_y = tuple_bounds
    flt_ax, flt_ay = tuple_anchor

    return ClipExtent(
        min_x=fn_snap(min_x, flt_ax, flt_resolution, np.floor),
        min_y=fn_snap(min_y, flt_ay, flt_resolution, np.floor),
        max_x=fn_snap(max_x, flt_ax, flt_resolution, np.ceil),
        max_y=fn_snap(max_y, flt_ay, flt_resolution, np.ceil),
        resolution=flt_resolution
    )
# ----------------


# ----------------
def fn_check_nesting(flt_coarse_cell, flt_resolution):
    flt_ratio = flt_coarse_cell / flt_resolution
    if flt_ratio < 1 or not np.isclose(flt_ratio, round(flt_ratio)):
        raise ValueError(
            f"Coarse cell size {flt_coarse_cell} must be an integer multiple "
            f"of the fine resolution {flt_resolution}"
        )
# ----------------


# ----------------
def fn_read_fine_window(str_fine_dem_path, extent):
    with rasterio.open(str_fine_dem_path) as src:
        left, bottom, right, top = src.bounds
        flt_tol = 1e-6 * extent.resolution

        if (extent.min_x < left - flt_tol or extent.max_x > right + flt_tol or
                extent.min_y < bottom - flt_tol or extent.max_y > top + flt_tol):
            raise CoverageGap(
                str_fine_dem_path,
                f"extent {extent.bounds} exceeds DEM bounds {(left, bottom, right, top)}"
            )

        window = from_bounds(extent.min_x, extent.min_y, extent.max_x, extent.max_y,
                             src.transform)

        # nearest neighbour when the DEM is not stored at the fine resolution
        data = src.read(
            1,
            window=window,
            out_shape=(extent.rows, extent.cols),
            resampling=Resampling.nearest
        ).astype(np.float64)

        nodata = src.nodata
        crs = src.crs

    return RasterGrid(data=data, transform=extent.transform, nodata=nodata, crs=crs)
# ----------------


# ----------------
def fn_mask_stencil(mask, extent):
    # fine cell is kept when its centre falls in a marked coarse cell
    flt_x0, flt_y0 = mask.origin
    flt_cs = mask.cell_size
    flt_res = extent.resolution

    arr_x = extent.min_x + (np.arange(extent.cols) + 0.5) * flt_res
    arr_y = extent.max_y - (np.arange(extent.rows) + 0.5) * flt_res

    arr_c = np.floor((arr_x - flt_x0) / flt_cs).astype(int)
    arr_r = np.floor((flt_y0 - arr_y) / flt_cs).astype(int)

    b_in_c = (arr_c >= 0) & (arr_c < mask.cols)
    b_in_r = (arr_r >= 0) & (arr_r < mask.rows)

    bool_marked = fn_marked(mask)
    stencil = bool_marked[np.ix_(np.clip(arr_r, 0, mask.rows - 1),
                                 np.clip(arr_c, 0, mask.cols - 1))]

    return stencil & b_in_r[:, None] & b_in_c[None, :]
# ----------------


# ----------------
def fn_clip_fine_dem(mask, str_fine_dem_path, flt_resolution, region):
    """
    Clip the fine DEM to the marked cells of a (buffered) coarse mask.

    1. bounding box of the marked cells
    2. snapped outward to the fine grid, anchored at the mask origin
    3. windowed read of the fine DEM inside that extent only
    4. cells outside the mask set to nodata
    5. region shrunk to the tight box of the clipped result

    Raises FootprintEmpty when nothing is marked and CoverageGap when
    the fine DEM does not supply every cell the mask asks for.
    """
    fn_check_nesting(mask.cell_size, float(flt_resolution))

    tuple_bounds = fn_mask_bounds(mask)
    clip_extent = fn_align_extent(tuple_bounds, flt_resolution, mask.origin)
    region.set_region(clip_extent)

    fine = fn_read_fine_window(str_fine_dem_path, clip_extent)
    stencil = fn_mask_stencil(mask, clip_extent)

    int_gap = int(np.count_nonzero(stencil & ~fine.valid))
    if int_gap:
        raise CoverageGap(str_fine_dem_path,
                          f"{int_gap} cell(s) inside the flow mask are nodata")

    arr_rows = np.flatnonzero(stencil.any(axis=1))
    arr_cols = np.flatnonzero(stencil.any(axis=0))
    r0, r1 = arr_rows[0], arr_rows[-1] + 1
    c0, c1 = arr_cols[0], arr_cols[-1] + 1

    flt_res = clip_extent.resolution
    tight_extent = ClipExtent(
        min_x=round(clip_extent.min_x + c0 * flt_res, INT_SNAP_DECIMALS),
        min_y=round(clip_extent.max_y - r1 * flt_res, INT_SNAP_DECIMALS),
        max_x=round(clip_extent.min_x + c1 * flt_res, INT_SNAP_DECIMALS),
        max_y=round(clip_extent.max_y - r0 * flt_res, INT_SNAP_DECIMALS),
        resolution=flt_res
    )

    data = np.where(stencil, fine.data, fine.nodata)[r0:r1, c0:c1]
    grid = RasterGrid(data=data, transform=tight_extent.transform,
                      nodata=fine.nodata, crs=fine.crs if fine.crs is not None else mask.crs)

    region.set_region(tight_extent)

    return ClipResult(
        grid=grid,
        clip_extent=clip_extent,
        tight_extent=tight_extent,
        cell_count=int(np.count_nonzero(stencil))
    )
# ----------------


# .........................................................
def fn_clip_fine_dem_05(mask,
                        str_fine_dem_path,
                        flt_resolution,
                        region,
                        str_output_filepath,
                        b_print_output):

    if b_print_output:
        print(f"  -- STEP 4: Clip fine DEM ({flt_resolution} m)")

    clip_result = fn_clip_fine_dem(mask, str_fine_dem_path, flt_resolution, region)
    clip_result.output_path = fn_write_raster_grid(clip_result.grid, str_output_filepath)

    if b_print_output:
        print(f"     -- Cells: {clip_result.clip_extent.cells} (aligned extent)"
              f" | {region.cells} (clipped region)"
              f" | {clip_result.cell_count} inside mask")

    return clip_result
# .........................................................
