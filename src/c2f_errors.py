# ************************************************************
# COARSE2FINE
# Module - c2f_errors
#
# Errors raised along the coarse-to-fine pipeline. Every error
# carries the stage it happened in so the driver can report
# which step failed.
# ************************************************************


# -----------------
class Coarse2FineError(Exception):
    """Base class for every pipeline failure that aborts a workflow."""

    def __init__(self, str_stage, str_message):
        self.stage = str_stage
        self.message = str_message
        super().__init__(f"[{str_stage}] {str_message}")
# -----------------


# -----------------
class MalformedRow(Coarse2FineError):
    """A hydrograph data row that cannot be used (skipped and counted)."""

    def __init__(self, int_line_number, str_line, str_reason):
        self.line_number = int_line_number
        self.line = str_line
        super().__init__(
            "hydrograph",
            f"line {int_line_number} skipped - {str_reason}: {str_line.strip()!r}"
        )
# -----------------


# -----------------
class InvalidFlowClass(Coarse2FineError):
    def __init__(self, value):
        self.value = value
        super().__init__(
            "flow class",
            f"flow class must be one of 1-4, got {value!r}"
        )
# -----------------


# -----------------
class FootprintEmpty(Coarse2FineError):
    def __init__(self, flt_flow_thresh=None):
        self.flow_thresh = flt_flow_thresh
        str_detail = "no flow above threshold detected in coarse run"
        if flt_flow_thresh is not None:
            str_detail = f"no flow above {flt_flow_thresh} m detected in coarse run"
        super().__init__(
            "footprint",
            f"footprint empty after dilation - {str_detail}"
        )
# -----------------


# -----------------
class CoverageGap(Coarse2FineError):
    def __init__(self, str_dem_path, str_reason):
        self.dem_path = str_dem_path
        super().__init__(
            "clip fine dem",
            f"fine DEM {str_dem_path} does not cover the clip extent - {str_reason}"
        )
# -----------------


# -----------------
class EngineRunError(Coarse2FineError):
    """Non-zero exit (or timeout) of the external simulation engine."""

    def __init__(self, str_stage, int_returncode, str_stderr, list_cmd=None):
        self.returncode = int_returncode
        self.stderr = str_stderr
        self.cmd = list_cmd
        super().__init__(
            str_stage,
            f"simulation engine exited with status {int_returncode}\n{str_stderr}"
        )
# -----------------
