# ************************************************************
# COARSE2FINE
# Script 04 - build_flow_mask_04
#
# Turns the coarse run's maximum flow height into a binary
# flow mask and grows it by a buffer of cells.
# ************************************************************

# ************************************************************
import numpy as np
from scipy import ndimage

from raster_grid import RasterGrid
# ************************************************************

FLT_MASK_NODATA = -9999.0


# -----------------
def fn_mask_from_bool(bool_marked, template):
    # marked cells = 1, everything else nodata (never 0)
    data = np.where(bool_marked, 1.0, FLT_MASK_NODATA)
    return RasterGrid(data=data, transform=template.transform,
                      nodata=FLT_MASK_NODATA, crs=template.crs)
# -----------------


# -----------------
def fn_marked(mask):
    return mask.valid & (mask.data == 1.0)
# -----------------


# -----------------
def fn_count_marked(mask):
    return int(np.count_nonzero(fn_marked(mask)))
# -----------------


# ----------------
def fn_extract_footprint(grid, flt_flow_thresh):
    """
    Mark every cell whose maximum flow height is strictly above the threshold.

    A height equal to the threshold is not flow. Nodata cells are
    never marked.
    """
    flt_flow_thresh = float(flt_flow_thresh)
    if not np.isfinite(flt_flow_thresh):
        raise ValueError(f"Flow threshold must be finite, got {flt_flow_thresh}")

    bool_marked = grid.valid & (grid.data > flt_flow_thresh)
    return fn_mask_from_bool(bool_marked, grid)
# ----------------


# ----------------
def fn_disk_structure(int_radius):
    # euclidean disk: dr^2 + dc^2 <= r^2 (r.grow default metric)
    arr_offsets = np.arange(-int_radius, int_radius + 1)
    dr, dc = np.meshgrid(arr_offsets, arr_offsets, indexing="ij")
    return (dr ** 2 + dc ** 2) <= int_radius ** 2
# ----------------


# ----------------
def fn_dilate_footprint(mask, int_radius):
    """
    Grow the marked cells of a mask by a radius in cells.

    Parameters
    ----------
    mask : RasterGrid
        Binary flow mask (1 / nodata).
    int_radius : int
        Buffer in cells. 0 returns an identical mask.

    Returns
    -------
    RasterGrid
        New mask on the same grid. Growth stops at the grid edge.
        An empty input gives an empty output.
    """
    if int(int_radius) != int_radius or int_radius < 0:
        raise ValueError(f"Buffer radius must be a non-negative integer, got {int_radius}")
    int_radius = int(int_radius)

    bool_marked = fn_marked(mask)

    if int_radius == 0 or not bool_marked.any():
        return fn_mask_from_bool(bool_marked, mask)

    bool_grown = ndimage.binary_dilation(bool_marked, structure=fn_disk_structure(int_radius))
    return fn_mask_from_bool(bool_grown, mask)
# ----------------


# .........................................................
def fn_build_flow_mask_04(hmax_grid, flt_flow_thresh, int_buffer_cells, b_print_output):
    # returns (raw mask, buffered mask)
    if b_print_output:
        print(f"  -- STEP 3: Create flow mask (> {flt_flow_thresh} m, buffer {int_buffer_cells} cells)")

    mask_raw = fn_extract_footprint(hmax_grid, flt_flow_thresh)
    mask_grown = fn_dilate_footprint(mask_raw, int_buffer_cells)

    if b_print_output:
        print(f"     -- Flow cells: {fn_count_marked(mask_raw)}"
              f" | with buffer: {fn_count_marked(mask_grown)}")

    return mask_raw, mask_grown
# .........................................................
