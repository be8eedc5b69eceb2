# ************************************************************
# COARSE2FINE
# Script 02 - resolve_flow_class_02
#
# Calibrated rheology per flow class and the per-stage
# simulation configuration handed to r.avaflow.
# ************************************************************

# ************************************************************
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from c2f_errors import InvalidFlowClass
# ************************************************************


# -----------------
class FlowClass(IntEnum):
    # classes are ordered by sediment concentration
    STREAMFLOW = 1
    HYPERCONCENTRATED = 2
    MUDFLOW = 3
    DEBRIS_FLOW = 4
# -----------------


# -----------------
@dataclass(frozen=True)
class FlowParams:
    """
    Single-phase Voellmy rheology.

    friction_angle        : phi, internal friction (degrees)
    basal_friction        : delta, basal friction (degrees) - lower = longer runout
    turbulent_coefficient : xi (m/s2) - higher = longer runout
    """
    name: str
    density: float
    friction_angle: float
    basal_friction: float
    turbulent_coefficient: float

    @property
    def friction(self):
        # xi is passed negative to select Voellmy turbulent friction
        return (self.friction_angle, self.basal_friction, -self.turbulent_coefficient)
# -----------------


# Parameters calibrated for equivalent runout to the 3-phase model
DICT_FLOW_CLASS_PARAMS = {
    FlowClass.STREAMFLOW: FlowParams(
        name="Streamflow (~5% sediment)",
        density=1050, friction_angle=25, basal_friction=2, turbulent_coefficient=2000),
    FlowClass.HYPERCONCENTRATED: FlowParams(
        name="Hyperconcentrated (20-40% sediment)",
        density=1400, friction_angle=28, basal_friction=4, turbulent_coefficient=1000),
    FlowClass.MUDFLOW: FlowParams(
        name="Mudflow (40-55% sediment)",
        density=1600, friction_angle=30, basal_friction=6, turbulent_coefficient=600),
    FlowClass.DEBRIS_FLOW: FlowParams(
        name="Debris flow (55-70% sediment)",
        density=1800, friction_angle=32, basal_friction=10, turbulent_coefficient=400),
}

TUPLE_STAGES = ('coarse', 'fine')


# -----------------
@dataclass(frozen=True)
class StageConfig:
    stage: str
    prefix: str
    resolution: float
    phase_count: int
    density_per_phase: tuple
    friction_params: tuple
    time_window: tuple
    cfl_params: tuple
    thresholds: tuple
    visualization_params: tuple
    cstopping: int = 1
    profile: str = ''
# -----------------


# ----------------
def fn_resolve_flow_class(value):
    # bool is an int subclass but never a flow class
    if isinstance(value, bool):
        raise InvalidFlowClass(value)

    if isinstance(value, str):
        value = value.strip()
        if not value.lstrip('-').isdigit():
            raise InvalidFlowClass(value)
        value = int(value)
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidFlowClass(value)
        value = int(value)
    elif not isinstance(value, (int, np.integer)):
        raise InvalidFlowClass(value)

    try:
        flow_class = FlowClass(int(value))
    except ValueError:
        raise InvalidFlowClass(value)

    return flow_class, DICT_FLOW_CLASS_PARAMS[flow_class]
# ----------------


# ----------------
def fn_parse_csv_floats(str_value, str_key):
    try:
        return tuple(float(s) for s in str(str_value).split(','))
    except ValueError:
        raise ValueError(f"'{str_key}' must be a comma separated list of numbers, got '{str_value}'")
# ----------------


# ----------------
def fn_format_number(flt_value):
    # 50.0 -> '50', 0.000001 -> '0.000001' (no exponent for the engine)
    return np.format_float_positional(float(flt_value), trim='-')
# ----------------


# ----------------
def fn_format_csv(tuple_values):
    list_out = []
    for value in tuple_values:
        if isinstance(value, str):
            list_out.append(value)
        else:
            list_out.append(fn_format_number(value))
    return ",".join(list_out)
# ----------------


# ----------------
def fn_build_stage_config(dict_all_params, str_stage, flow_params=None):
    """
    Build the immutable configuration of one simulation stage.

    Parameters
    ----------
    dict_all_params : dict
        Combined GLOBAL + LOCAL configuration.
    str_stage : str
        'coarse' or 'fine'.
    flow_params : FlowParams, optional
        Rheology for 1-phase runs. Ignored (and not needed) for
        3-phase runs, which read density and friction from config.
    """
    if str_stage not in TUPLE_STAGES:
        raise ValueError(f"Stage must be one of {TUPLE_STAGES}, got '{str_stage}'")

    int_phases = int(dict_all_params['phases'])

    if int_phases == 1:
        if flow_params is None:
            raise ValueError("1-phase runs need the flow class rheology")
        tuple_density = (float(flow_params.density),)
        tuple_friction = tuple(float(x) for x in flow_params.friction)
    elif int_phases == 3:
        tuple_density = fn_parse_csv_floats(dict_all_params['density'], 'density')
        tuple_friction = fn_parse_csv_floats(dict_all_params['friction'], 'friction')
        if len(tuple_density) != 3:
            raise ValueError(f"3-phase runs need 3 densities (solid, fine, fluid), got {len(tuple_density)}")
    else:
        raise ValueError(f"phases must be 1 or 3, got {int_phases}")

    flt_resolution = float(dict_all_params[f'cell_{str_stage}'])
    if flt_resolution <= 0:
        raise ValueError(f"cell_{str_stage} must be > 0, got {flt_resolution}")

    tuple_time = fn_parse_csv_floats(dict_all_params[f'time_{str_stage}'], f'time_{str_stage}')
    tuple_cfl = fn_parse_csv_floats(dict_all_params[f'cfl_{str_stage}'], f'cfl_{str_stage}')
    tuple_thresholds = fn_parse_csv_floats(dict_all_params[f'thresholds_{str_stage}'],
                                           f'thresholds_{str_stage}')

    # pvpath / rscriptpath / rlibspath are free text ("None")
    tuple_visualization = tuple(
        s.strip() for s in str(dict_all_params[f'visualization_{str_stage}']).split(',')
    )

    # the longitudinal profile is only written for the fine run
    str_profile = ''
    if str_stage == 'fine':
        str_profile = str(dict_all_params.get('profile', '') or '').strip()

    return StageConfig(
        stage=str_stage,
        prefix=f"{dict_all_params['run_name']}_{str_stage}",
        resolution=flt_resolution,
        phase_count=int_phases,
        density_per_phase=tuple_density,
        friction_params=tuple_friction,
        time_window=tuple_time,
        cfl_params=tuple_cfl,
        thresholds=tuple_thresholds,
        visualization_params=tuple_visualization,
        cstopping=int(dict_all_params.get(f'cstopping_{str_stage}', 1) or 1),
        profile=str_profile
    )
# ----------------


# ----------------
def fn_print_flow_summary(flow_class, flow_params):
    print("==============================================")
    print(f"FLOW TYPE {int(flow_class)}: {flow_params.name}")
    print("==============================================")
    print("Rheological parameters:")
    print(f"  Density:    {fn_format_number(flow_params.density)} kg/m³")
    print(f"  phi:        {fn_format_number(flow_params.friction_angle)}° (internal friction)")
    print(f"  delta:      {fn_format_number(flow_params.basal_friction)}° (basal friction)")
    print(f"  xi:         {fn_format_number(flow_params.turbulent_coefficient)} m/s² (turbulent coeff)")
    print(f"Friction string: {fn_format_csv(flow_params.friction)}")
    print("")
# ----------------
