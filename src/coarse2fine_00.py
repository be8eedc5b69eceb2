# ************************************************************
# COARSE2FINE
# Script - coarse2fine_00 (main script)
#
# Coarse-to-fine r.avaflow workflow: (1) coarse simulation,
# (2) extract and buffer the flow footprint, (3) clip the fine
# DEM to the footprint, (4) fine simulation. Several flow
# classes / volume multipliers run as a parameter sweep.
# ************************************************************

# ************************************************************
import os
import sys
from concurrent.futures import ThreadPoolExecutor

import argparse
import configparser
import time
import datetime

from run_avaflow_03 import fn_run_avaflow
from stage_driver_06 import TwoStageDriver
# ************************************************************

DICT_GLOBAL_SECTION_SCHEMA = {
    'footprint': [
        'flow_thresh',
        'buffer_cells'
    ],
    'coarse_stage': [
        'cell_coarse',
        'time_coarse',
        'cfl_coarse',
        'thresholds_coarse',
        'visualization_coarse',
        'cstopping_coarse'
    ],
    'fine_stage': [
        'cell_fine',
        'time_fine',
        'cfl_fine',
        'thresholds_fine',
        'visualization_fine',
        'cstopping_fine'
    ],
    'engine': [
        'executable',
        'flags',
        'import_command',
        'region_command',
        'timeout_seconds'
    ]
}

DICT_LOCAL_SECTION_SCHEMA = {
    'run_parameters': [
        'run_name',
        'out_root_folder',
        'dtm_coarse',
        'dtm_fine',
        'hydrograph',
        'hydrocoords',
        'profile',
        'phases',
        'flow_classes',
        'volume_multipliers',
        'max_workers'
    ]
}

# only read when phases = 3
DICT_THREE_PHASE_SCHEMA = {
    'three_phase': [
        'density',
        'friction'
    ]
}


# ^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^
def is_valid_file(parser, arg):
    if not os.path.exists(arg):
        parser.error("The file %s does not exist" % arg)
    else:
        return arg
# ^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^


# ----------------
def fn_str_to_bool(value):
    if isinstance(value, bool):
        return value
    if value.lower() in {'true', 't', '1'}:
        return True
    elif value.lower() in {'false', 'f', '0'}:
        return False
    else:
        raise argparse.ArgumentTypeError(f"Boolean value expected. Got '{value}'.")
# ----------------


# ----------------
def fn_read_config_sections(str_config_file_path, dict_schema, str_label):
    config = configparser.ConfigParser()
    config.read(str_config_file_path)

    dict_params = {}

    for section_name, keys in dict_schema.items():
        if section_name not in config:
            raise KeyError(f"Missing [{section_name}] section in {str_label} config")

        section = config[section_name]
        dict_params.update({
            key: section.get(key, '')
            for key in keys
        })

    return dict_params
# ----------------


# ----------------
def fn_read_all_params(str_global_config_file_path, str_local_config_file_path):
    dict_global_params = fn_read_config_sections(
        str_global_config_file_path, DICT_GLOBAL_SECTION_SCHEMA, 'GLOBAL')

    dict_local_params = fn_read_config_sections(
        str_local_config_file_path, DICT_LOCAL_SECTION_SCHEMA, 'LOCAL')

    if str(dict_local_params['phases']).strip() == '3':
        dict_local_params.update(fn_read_config_sections(
            str_local_config_file_path, DICT_THREE_PHASE_SCHEMA, 'LOCAL'))

    # COMBINE (local overrides global if collision)
    dict_all_params = {
        **dict_global_params,
        **dict_local_params
    }

    for str_key in ('run_name', 'out_root_folder', 'dtm_coarse', 'dtm_fine',
                    'hydrograph', 'hydrocoords', 'phases'):
        if not str(dict_all_params[str_key]).strip():
            raise KeyError(f"Missing required '{str_key}' in LOCAL config")

    return dict_all_params
# ----------------


# --------------
def fn_float_label(flt_value):
    # 1.5 -> '1p5', 1.0 -> '1p0' (every digit of the float kept)
    return repr(float(flt_value)).replace('.', 'p')
# --------------


# --------------
def fn_list_runs(dict_all_params):
    """
    Expand flow_classes x volume_multipliers into one entry per
    workflow instance: (run_name, flow_class, multiplier).

    Each instance gets its own run name so its outputs never
    overlap with another instance.
    """
    str_run_name = dict_all_params['run_name']

    list_multipliers = [
        float(s) for s in str(dict_all_params.get('volume_multipliers') or '1.0').split(',')
        if s.strip()
    ]

    if str(dict_all_params['phases']).strip() == '3':
        list_classes = [None]
    else:
        list_classes = [
            s.strip() for s in str(dict_all_params.get('flow_classes') or '').split(',')
            if s.strip()
        ]
        if not list_classes:
            # an empty list is rejected by the resolver
            list_classes = ['']

    list_runs = []
    b_single = len(list_classes) * len(list_multipliers) == 1

    for flow_class in list_classes:
        for flt_multiplier in list_multipliers:
            if b_single:
                str_name = str_run_name
            elif flow_class is None:
                str_name = f"{str_run_name}_x{fn_float_label(flt_multiplier)}"
            else:
                str_name = f"{str_run_name}_fc{flow_class}_x{fn_float_label(flt_multiplier)}"
            list_runs.append((str_name, flow_class, flt_multiplier))

    list_names = [str_name for str_name, _, _ in list_runs]
    list_duplicates = sorted({s for s in list_names if list_names.count(s) > 1})
    if list_duplicates:
        raise ValueError(
            f"Duplicate flow_classes / volume_multipliers entries give the same run name: "
            f"{', '.join(list_duplicates)}"
        )

    return list_runs
# --------------


# ---------------
def fn_run_single(dict_all_params, str_run_name, flow_class, flt_multiplier,
                  fn_engine, b_print_output):

    dict_run_params = {**dict_all_params, 'run_name': str_run_name}

    driver = TwoStageDriver(
        dict_run_params,
        flow_class=flow_class,
        flt_multiplier=flt_multiplier,
        fn_engine=fn_engine,
        b_print_output=b_print_output
    )
    return driver.run()
# ---------------


# .........................................................
def fn_coarse2fine_00(str_global_config_file_path,
                      str_local_config_file_path,
                      b_print_output,
                      fn_engine=fn_run_avaflow):

    # ---- Header output ----
    if b_print_output:
        print(f"""
+=================================================================+
|                        RUNNING COARSE2FINE                      |
|          Coarse-to-fine r.avaflow flow simulation workflow      |
+-----------------------------------------------------------------+
  ---(g) INPUT GLOBAL CONFIGURATION FILE: {str_global_config_file_path}
  ---(c) LOCAL CONFIGURATION FILE:  {str_local_config_file_path}
  ---[r] PRINT OUTPUT: {b_print_output}
===================================================================
""")
    else:
        print("Script 00: Running COARSE2FINE")

    dict_all_params = fn_read_all_params(str_global_config_file_path,
                                         str_local_config_file_path)

    list_runs = fn_list_runs(dict_all_params)

    str_workers = str(dict_all_params.get('max_workers') or '1').strip()
    int_max_workers = max(1, min(int(str_workers), len(list_runs)))

    if int_max_workers == 1:
        list_results = []
        for int_index, (str_name, flow_class, flt_multiplier) in enumerate(list_runs):
            print(f"  -- RUN {int_index + 1} of {len(list_runs)}: {str_name}")
            list_results.append(fn_run_single(dict_all_params, str_name, flow_class,
                                              flt_multiplier, fn_engine, b_print_output))
    else:
        # step output is suppressed for parallel runs
        print(f"  -- Running {len(list_runs)} workflows on {int_max_workers} workers")
        with ThreadPoolExecutor(max_workers=int_max_workers) as executor:
            list_futures = [
                executor.submit(fn_run_single, dict_all_params, str_name, flow_class,
                                flt_multiplier, fn_engine, False)
                for str_name, flow_class, flt_multiplier in list_runs
            ]
            list_results = [future.result() for future in list_futures]

    if len(list_results) > 1:
        print("")
        print("  -- Sweep summary:")
        for result in list_results:
            str_status = result.state.value.upper()
            if result.error is not None:
                str_status += f" - {result.error}"
            print(f"     -- {result.run_name}: {str_status}")

    return list_results
# .........................................................


#~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
if __name__ == '__main__':

    flt_start_run = time.time()

    parser = argparse.ArgumentParser(description='========= COARSE-TO-FINE R.AVAFLOW =========')

    parser.add_argument('-g',
                        dest = "str_global_config_file_path",
                        help=r'REQUIRED: Global configuration filepath Example:./config/global_config.ini',
                        required=True,
                        metavar='FILE',
                        type=lambda x: is_valid_file(parser, x))

    parser.add_argument('-c',
                        dest = "str_local_config_file_path",
                        help=r'REQUIRED: Local configuration filepath Example:./config/local_config.ini',
                        required=True,
                        metavar='FILE',
                        type=lambda x: is_valid_file(parser, x))

    parser.add_argument('-r',
                        dest = "b_print_output",
                        help=r'OPTIONAL: Print output messages Default: True',
                        required=False,
                        default=True,
                        metavar='T/F',type=fn_str_to_bool)

    args = vars(parser.parse_args())

    list_results = fn_coarse2fine_00(args['str_global_config_file_path'],
                                      args['str_local_config_file_path'],
                                      args['b_print_output'])

    flt_end_run = time.time()
    flt_time_pass = (flt_end_run - flt_start_run) // 1
    time_pass = datetime.timedelta(seconds=flt_time_pass)

    print('Compute Time: ' + str(time_pass))

    if not all(result.ok for result in list_results):
        sys.exit(1)
#~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
