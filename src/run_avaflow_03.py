# ************************************************************
# COARSE2FINE
# Script 03 - run_avaflow_03
#
# Calls the external r.avaflow engine for one simulation stage
# and locates its maximum flow height raster.
# ************************************************************

# ************************************************************
import os
import shlex
import subprocess

import threading
import itertools
import sys
import time

from c2f_errors import EngineRunError
from resolve_flow_class_02 import fn_format_csv, fn_format_number
# ************************************************************

STR_DEFAULT_EXECUTABLE = "r.avaflow.40G"
STR_DEFAULT_FLAGS = "-e -v"
STR_DEFAULT_IMPORT_COMMAND = "r.in.gdal"
STR_DEFAULT_REGION_COMMAND = "g.region"


# -----------------
def fn_run_with_spinner(func, *args, message="Running"):
    spinner = itertools.cycle("|/-\\")
    result = {}

    def wrapper():
        try:
            result["value"] = func(*args)
        except Exception as e:
            result["error"] = e

    thread = threading.Thread(target=wrapper)
    thread.start()

    while thread.is_alive():
        sys.stdout.write(f"\r{message}... {next(spinner)}")
        sys.stdout.flush()
        time.sleep(0.1)

    thread.join()
    sys.stdout.write("\r" + " " * 50 + "\r")  # clear line

    if "error" in result:
        raise result["error"]
    return result.get("value")
# -----------------


# -----------------
def fn_hmax_path(str_work_folder, str_prefix):
    # r.avaflow writes <prefix>_results/<prefix>_ascii/<prefix>_hflow_max.asc
    return os.path.join(
        str_work_folder,
        f"{str_prefix}_results",
        f"{str_prefix}_ascii",
        f"{str_prefix}_hflow_max.asc"
    )
# -----------------


# -----------------
def fn_dem_map_name(str_prefix):
    # one GRASS map per stage prefix so sweep instances never overwrite each other
    return f"{str_prefix}_dtm"
# -----------------


# ----------------
def fn_build_import_command(str_raster_path, str_map_name,
                            str_import_command=STR_DEFAULT_IMPORT_COMMAND):
    return shlex.split(str_import_command) + [
        "-o",
        "--overwrite",
        f"input={str_raster_path}",
        f"output={str_map_name}",
    ]
# ----------------


# ----------------
def fn_build_region_command(str_map_name, str_region_command=STR_DEFAULT_REGION_COMMAND):
    return shlex.split(str_region_command) + [f"raster={str_map_name}", "-a"]
# ----------------


# ----------------
def fn_build_avaflow_command(stage_config,
                             str_elevation,
                             str_hydrograph,
                             str_hydrocoords,
                             str_executable=STR_DEFAULT_EXECUTABLE,
                             str_flags=STR_DEFAULT_FLAGS):

    cmd = [str_executable] + shlex.split(str_flags or '')

    cmd += [
        f"prefix={stage_config.prefix}",
        f"cellsize={fn_format_number(stage_config.resolution)}",
        f"phases={stage_config.phase_count}",
        f"density={fn_format_csv(stage_config.density_per_phase)}",
        f"elevation={str_elevation}",
        f"friction={fn_format_csv(stage_config.friction_params)}",
        f"cstopping={stage_config.cstopping}",
        f"time={fn_format_csv(stage_config.time_window)}",
        f"hydrocoords={str_hydrocoords}",
        f"hydrograph={str_hydrograph}",
    ]

    if stage_config.profile:
        cmd.append(f"profile={stage_config.profile}")

    cmd += [
        f"thresholds={fn_format_csv(stage_config.thresholds)}",
        f"visualization={fn_format_csv(stage_config.visualization_params)}",
        f"cfl={fn_format_csv(stage_config.cfl_params)}",
    ]

    return cmd
# ----------------


# --------------------
def fn_execute_engine(cmd, str_work_folder, flt_timeout, str_stage):
    try:
        result = subprocess.run(
            cmd,
            cwd=str_work_folder,
            capture_output=True,
            text=True,
            timeout=flt_timeout,
        )
    except subprocess.TimeoutExpired as e:
        str_stderr = e.stderr if isinstance(e.stderr, str) else ''
        raise EngineRunError(str_stage, -1,
                             f"timed out after {flt_timeout} s\n{str_stderr}", cmd)
    except FileNotFoundError as e:
        raise EngineRunError(str_stage, 127, str(e), cmd)

    if result.returncode != 0:
        # never retried
        raise EngineRunError(str_stage, result.returncode, result.stderr, cmd)

    return result.stdout
# --------------------


# .........................................................
def fn_run_avaflow(stage_config,
                   str_elevation,
                   str_hydrograph,
                   dict_all_params,
                   str_work_folder,
                   b_print_output):
    """
    Run one r.avaflow stage and return the path of its hflow_max raster.

    ``str_elevation`` is a raster file. It is imported into GRASS as
    ``<prefix>_dtm`` (r.in.gdal) and the region is set from that map
    (g.region) before r.avaflow runs on it.

    Raises EngineRunError on a non-zero exit of any of the three
    commands, on timeout, or when the engine finishes without writing
    the maximum flow height raster.
    """
    str_stage = f"{stage_config.stage} simulation"
    str_map_name = fn_dem_map_name(stage_config.prefix)

    cmd_import = fn_build_import_command(
        str_elevation,
        str_map_name,
        dict_all_params.get('import_command') or STR_DEFAULT_IMPORT_COMMAND
    )
    cmd_region = fn_build_region_command(
        str_map_name,
        dict_all_params.get('region_command') or STR_DEFAULT_REGION_COMMAND
    )
    cmd = fn_build_avaflow_command(
        stage_config,
        str_map_name,
        str_hydrograph,
        dict_all_params['hydrocoords'],
        dict_all_params.get('executable') or STR_DEFAULT_EXECUTABLE,
        dict_all_params.get('flags', STR_DEFAULT_FLAGS)
    )

    str_timeout = str(dict_all_params.get('timeout_seconds', '') or '').strip()
    flt_timeout = float(str_timeout) if str_timeout else None

    os.makedirs(str_work_folder, exist_ok=True)

    fn_execute_engine(cmd_import, str_work_folder, flt_timeout, f"{stage_config.stage} import")
    fn_execute_engine(cmd_region, str_work_folder, flt_timeout, f"{stage_config.stage} region")

    flt_start = time.time()
    if b_print_output:
        fn_run_with_spinner(
            fn_execute_engine,
            cmd,
            str_work_folder,
            flt_timeout,
            str_stage,
            message=f"     -- Running {stage_config.prefix}"
        )
    else:
        fn_execute_engine(cmd, str_work_folder, flt_timeout, str_stage)

    print(f"     -- Run {stage_config.prefix} completed in {round(time.time() - flt_start)} seconds")

    str_hmax_path = fn_hmax_path(str_work_folder, stage_config.prefix)
    if not os.path.isfile(str_hmax_path):
        raise EngineRunError(str_stage, 0,
                             f"engine finished but {str_hmax_path} was not written", cmd)

    return str_hmax_path
# .........................................................
