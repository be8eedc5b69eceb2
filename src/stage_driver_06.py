# ************************************************************
# COARSE2FINE
# Script 06 - stage_driver_06
#
# State machine that sequences one coarse-to-fine workflow:
#   IDLE -> COARSE_RUNNING -> FOOTPRINT_READY -> FINE_RUNNING -> DONE
# with FAILED reachable from every non-terminal state. The fine
# stage is never started before the footprint is validated.
# ************************************************************

# ************************************************************
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum

from rasterio.errors import RasterioError

from c2f_errors import Coarse2FineError, FootprintEmpty
from raster_grid import fn_read_raster_grid, fn_write_raster_grid
from scale_hydrograph_01 import fn_scale_hydrograph_01
from resolve_flow_class_02 import (fn_resolve_flow_class,
                                   fn_build_stage_config,
                                   fn_print_flow_summary)
from run_avaflow_03 import fn_run_avaflow
from build_flow_mask_04 import fn_build_flow_mask_04, fn_count_marked
from clip_fine_dem_05 import WorkingRegion, fn_clip_fine_dem_05
# ************************************************************


# -----------------
class DriverState(Enum):
    IDLE = "idle"
    COARSE_RUNNING = "coarse running"
    FOOTPRINT_READY = "footprint ready"
    FINE_RUNNING = "fine running"
    DONE = "done"
    FAILED = "failed"
# -----------------


SET_TERMINAL_STATES = {DriverState.DONE, DriverState.FAILED}


# -----------------
@dataclass
class DriverResult:
    run_name: str
    state: DriverState
    error: Exception = None
    failed_in: DriverState = None
    flow_class: object = None
    flow_params: object = None
    multiplier: float = 1.0
    scale_result: object = None
    clip_result: object = None
    flow_cells: int = 0
    buffered_cells: int = 0
    dict_paths: dict = field(default_factory=dict)

    @property
    def ok(self):
        return self.state is DriverState.DONE
# -----------------


# -----------------
class TwoStageDriver:
    """
    One coarse-to-fine workflow instance.

    ``step()`` performs exactly one transition; ``run()`` steps until
    DONE or FAILED. The engine is injected (``fn_engine``) with the
    signature of ``run_avaflow_03.fn_run_avaflow`` and must return the
    path of the stage's maximum flow height raster.

    Every instance owns its run folder and its WorkingRegion, so
    instances with different run names can run side by side.
    """

    def __init__(self,
                 dict_all_params,
                 flow_class=None,
                 flt_multiplier=1.0,
                 fn_engine=fn_run_avaflow,
                 region=None,
                 b_print_output=True):

        self.dict_all_params = dict(dict_all_params)
        self.fn_engine = fn_engine
        self.region = region if region is not None else WorkingRegion()
        self.b_print_output = b_print_output

        self.state = DriverState.IDLE
        self.str_run_name = self.dict_all_params['run_name']
        self.str_work_folder = os.path.abspath(
            os.path.join(self.dict_all_params['out_root_folder'], self.str_run_name)
        )

        self.stage_coarse = None
        self.stage_fine = None
        self.str_hydrograph_run = None

        self.result = DriverResult(
            run_name=self.str_run_name,
            state=self.state,
            flow_class=flow_class,
            multiplier=float(flt_multiplier)
        )

    # -----------------
    def _fn_path(self, str_name):
        return os.path.join(self.str_work_folder, str_name)

    # -----------------
    def _fn_prepare(self):
        # flow class and stage configs are validated before any engine call
        dict_params = self.dict_all_params
        int_phases = int(dict_params['phases'])
        os.makedirs(self.str_work_folder, exist_ok=True)

        flow_params = None
        if int_phases == 1:
            flow_class, flow_params = fn_resolve_flow_class(self.result.flow_class)
            self.result.flow_class = flow_class
            self.result.flow_params = flow_params
            if self.b_print_output:
                fn_print_flow_summary(flow_class, flow_params)
        elif self.result.multiplier != 1.0:
            raise ValueError("Volume scaling is only supported for 1-phase runs")

        # the engine runs inside the work folder; a profile file must not be relative
        str_profile = str(dict_params.get('profile', '') or '').strip()
        if str_profile and os.path.isfile(str_profile):
            dict_params['profile'] = os.path.abspath(str_profile)

        self.stage_coarse = fn_build_stage_config(dict_params, 'coarse', flow_params)
        self.stage_fine = fn_build_stage_config(dict_params, 'fine', flow_params)

        str_hydrograph = os.path.abspath(dict_params['hydrograph'])

        if int_phases == 1:
            if self.b_print_output:
                print("  -- STEP 1: Scale hydrograph")
            str_scaled = self._fn_path(f"{self.str_run_name}_hydrograph_scaled.txt")
            self.result.scale_result = fn_scale_hydrograph_01(
                str_hydrograph, str_scaled, self.result.multiplier, self.b_print_output)
            self.str_hydrograph_run = str_scaled
        else:
            # 3-phase hydrographs are passed through unscaled
            self.str_hydrograph_run = self._fn_path(os.path.basename(str_hydrograph))
            if os.path.abspath(self.str_hydrograph_run) != str_hydrograph:
                shutil.copy2(str_hydrograph, self.str_hydrograph_run)

        self.result.dict_paths['hydrograph'] = self.str_hydrograph_run

    # -----------------
    def _fn_start_coarse(self):
        self._fn_prepare()

        if self.b_print_output:
            print(f"  -- STEP 2: Coarse simulation ({self.stage_coarse.resolution} m)")

        self.state = DriverState.COARSE_RUNNING
        str_hmax = self.fn_engine(
            self.stage_coarse,
            os.path.abspath(self.dict_all_params['dtm_coarse']),
            self.str_hydrograph_run,
            self.dict_all_params,
            self.str_work_folder,
            self.b_print_output
        )
        self.result.dict_paths['hmax_coarse'] = str_hmax

    # -----------------
    def _fn_build_footprint(self):
        dict_params = self.dict_all_params
        flt_flow_thresh = float(dict_params['flow_thresh'])

        hmax_grid = fn_read_raster_grid(self.result.dict_paths['hmax_coarse'])

        mask_raw, mask_grown = fn_build_flow_mask_04(
            hmax_grid,
            flt_flow_thresh,
            int(dict_params['buffer_cells']),
            self.b_print_output
        )
        self.result.flow_cells = fn_count_marked(mask_raw)
        self.result.buffered_cells = fn_count_marked(mask_grown)

        self.result.dict_paths['mask_raw'] = fn_write_raster_grid(
            mask_raw, self._fn_path("flow_mask_raw.tif"))
        self.result.dict_paths['mask'] = fn_write_raster_grid(
            mask_grown, self._fn_path("flow_mask.tif"))

        if self.result.buffered_cells == 0:
            raise FootprintEmpty(flt_flow_thresh)

        self.result.clip_result = fn_clip_fine_dem_05(
            mask_grown,
            os.path.abspath(dict_params['dtm_fine']),
            self.stage_fine.resolution,
            self.region,
            self._fn_path("dtm_fine_clip.tif"),
            self.b_print_output
        )
        self.result.dict_paths['dtm_fine_clip'] = self.result.clip_result.output_path
        self.state = DriverState.FOOTPRINT_READY

    # -----------------
    def _fn_start_fine(self):
        if self.b_print_output:
            print(f"  -- STEP 5: Fine simulation ({self.stage_fine.resolution} m)")

        self.state = DriverState.FINE_RUNNING
        str_hmax = self.fn_engine(
            self.stage_fine,
            self.result.dict_paths['dtm_fine_clip'],
            self.str_hydrograph_run,
            self.dict_all_params,
            self.str_work_folder,
            self.b_print_output
        )
        self.result.dict_paths['hmax_fine'] = str_hmax

    # -----------------
    def _fn_finish(self):
        self.state = DriverState.DONE

    # -----------------
    def step(self):
        if self.state in SET_TERMINAL_STATES:
            return self.state

        dict_transitions = {
            DriverState.IDLE: self._fn_start_coarse,
            DriverState.COARSE_RUNNING: self._fn_build_footprint,
            DriverState.FOOTPRINT_READY: self._fn_start_fine,
            DriverState.FINE_RUNNING: self._fn_finish,
        }

        state_before = self.state
        try:
            dict_transitions[state_before]()
        except (Coarse2FineError, RasterioError, KeyError, ValueError, OSError) as e:
            self.result.failed_in = self.state
            self.result.error = e
            self.state = DriverState.FAILED
            print(f"  -- FAILED ({self.str_run_name}, {self.result.failed_in.value}): {e}")

        self.result.state = self.state
        return self.state

    # -----------------
    def run(self):
        while self.state not in SET_TERMINAL_STATES:
            self.step()

        if self.state is DriverState.DONE and self.b_print_output:
            fn_print_run_summary(self.result)

        return self.result
# -----------------


# ----------------
def fn_print_run_summary(result):
    print("")
    print("==============================================")
    print(f"COMPLETE: {result.run_name}")
    print("==============================================")
    if result.flow_params is not None:
        print(f"Flow type: {result.flow_params.name}")
    print(f"Volume multiplier: {result.multiplier}x")
    if result.clip_result is not None:
        print(f"Fine domain: {result.clip_result.cell_count} cells "
              f"({result.clip_result.tight_extent.bounds})")
    print("")
    print("If runout is too short:")
    print("  -> Increase volume_multipliers")
    print("  -> Or decrease flow_classes (lower = longer runout)")
    print("")
    print("If runout is too long:")
    print("  -> Decrease volume_multipliers")
    print("  -> Or increase flow_classes (higher = shorter runout)")
# ----------------
