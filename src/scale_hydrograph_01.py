# ************************************************************
# COARSE2FINE
# Script 01 - scale_hydrograph_01
#
# Multiplies the discharge of an input hydrograph by a volume
# multiplier and reports the original / scaled volumes.
# ************************************************************

# ************************************************************
import os
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

import argparse
import time
import datetime

from c2f_errors import MalformedRow
# ************************************************************

INT_MIN_FIELDS = 3


# -----------------
@dataclass
class Hydrograph:
    """
    Discharge time series fed to the simulation engine.

    ``df`` holds the numeric columns (time, discharge, velocity).
    ``list_tokens`` keeps the text fields of every row so that
    columns and number formats not touched by scaling are written
    back exactly as read.
    """
    header: str
    df: pd.DataFrame
    list_tokens: list = field(default_factory=list)

    def __len__(self):
        return len(self.df)
# -----------------


# -----------------
@dataclass
class HydrographScaleResult:
    output_path: str
    multiplier: float
    original_volume: float
    scaled_volume: float
    skipped_rows: int
# -----------------


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
def fn_parse_hydrograph_row(str_line, int_line_number):
    list_tokens = str_line.strip().split()

    if len(list_tokens) < INT_MIN_FIELDS:
        raise MalformedRow(int_line_number, str_line,
                           f"expected at least {INT_MIN_FIELDS} fields, found {len(list_tokens)}")

    try:
        flt_t = float(list_tokens[0])
        flt_q = float(list_tokens[1])
        flt_v = float(list_tokens[2])
    except ValueError:
        raise MalformedRow(int_line_number, str_line, "non-numeric field")

    if not all(np.isfinite([flt_t, flt_q, flt_v])):
        raise MalformedRow(int_line_number, str_line, "non-finite field")

    if flt_q < 0:
        raise MalformedRow(int_line_number, str_line, "negative discharge")

    return list_tokens, flt_t, flt_q, flt_v
# ----------------


# ----------------
def fn_read_hydrograph(str_hydrograph_filepath):
    """
    Read a whitespace separated hydrograph file.

    Returns
    -------
    (Hydrograph, list_skipped)
        list_skipped holds one MalformedRow per data row that was
        dropped. Blank lines are ignored and not counted.
    """
    list_skipped = []
    list_tokens = []
    list_records = []

    with open(str_hydrograph_filepath, 'r') as fin:
        str_header = fin.readline()

        for int_line_number, str_line in enumerate(fin, start=2):
            if not str_line.strip():
                continue
            try:
                tokens, flt_t, flt_q, flt_v = fn_parse_hydrograph_row(str_line, int_line_number)
            except MalformedRow as e:
                list_skipped.append(e)
                continue

            list_tokens.append(tokens)
            list_records.append((flt_t, flt_q, flt_v))

    df = pd.DataFrame(list_records, columns=["time", "discharge", "velocity"], dtype=float)

    # the engine expects a monotonic time axis
    if (df["time"].diff() < 0).any():
        int_bad = int(np.argmax(df["time"].diff().to_numpy() < 0))
        raise ValueError(
            f"Hydrograph time must be non-decreasing: {df['time'].iloc[int_bad]} "
            f"follows {df['time'].iloc[int_bad - 1]} in {str_hydrograph_filepath}"
        )

    return Hydrograph(header=str_header, df=df, list_tokens=list_tokens), list_skipped
# ----------------


# ----------------
def fn_scale_hydrograph(hydrograph, flt_multiplier):
    # returns a new hydrograph; the input is left untouched
    flt_multiplier = float(flt_multiplier)
    if not np.isfinite(flt_multiplier) or flt_multiplier <= 0:
        raise ValueError(f"Volume multiplier must be > 0, got {flt_multiplier}")

    df_scaled = hydrograph.df.copy()
    list_tokens = [list(tokens) for tokens in hydrograph.list_tokens]

    if flt_multiplier != 1.0:
        df_scaled["discharge"] = df_scaled["discharge"] * flt_multiplier
        for tokens, flt_q in zip(list_tokens, df_scaled["discharge"]):
            tokens[1] = f"{flt_q:.2f}"

    return Hydrograph(header=hydrograph.header, df=df_scaled, list_tokens=list_tokens)
# ----------------


# ----------------
def fn_compute_volume(hydrograph):
    """
    Rectangular volume of the hydrograph (m3 when discharge is m3/s).

    Each discharge is held until the next sample; the first
    discharge covers the span from time zero to the first sample.
    """
    df = hydrograph.df
    if df.empty:
        return 0.0

    ps_dt = df["time"].diff().fillna(df["time"].iloc[0])
    ps_q_held = df["discharge"].shift(1).fillna(df["discharge"].iloc[0])

    return float((ps_q_held * ps_dt).sum())
# ----------------


# ----------------
def fn_write_hydrograph(hydrograph, str_output_filepath):
    """
    Write the header and one tab separated row per sample.

    Only the discharge field is reformatted (two decimals) and only
    when it was scaled. Time, velocity and extra columns are written
    exactly as read, so a velocity of "2" stays "2" rather than "2.0".
    """
    with open(str_output_filepath, 'w') as fout:
        fout.write(hydrograph.header)
        for tokens in hydrograph.list_tokens:
            fout.write("\t".join(tokens) + "\n")

    return str_output_filepath
# ----------------


# .........................................................
def fn_scale_hydrograph_01(str_hydrograph_filepath,
                           str_output_filepath,
                           flt_multiplier,
                           b_print_output):

    if b_print_output:
        print(f"""
+=================================================================+
|                       SCALING HYDROGRAPH                        |
+-----------------------------------------------------------------+
  ---(i) INPUT HYDROGRAPH: {str_hydrograph_filepath}
  ---(o) OUTPUT HYDROGRAPH: {str_output_filepath}
  ---(m) VOLUME MULTIPLIER: {flt_multiplier}
===================================================================
""")
    else:
        print("Script 01: Scale hydrograph")

    hydrograph, list_skipped = fn_read_hydrograph(str_hydrograph_filepath)

    if list_skipped:
        print(f"  -- Skipped {len(list_skipped)} malformed row(s)")
        if b_print_output:
            for err in list_skipped:
                print(f"     -- {err.message}")

    hydrograph_scaled = fn_scale_hydrograph(hydrograph, flt_multiplier)
    fn_write_hydrograph(hydrograph_scaled, str_output_filepath)

    flt_volume_original = fn_compute_volume(hydrograph)
    flt_volume_scaled = fn_compute_volume(hydrograph_scaled)

    if b_print_output:
        print(f"  -- Original volume:  {flt_volume_original:,.0f} m³")
        print(f"  -- Scaled volume:    {flt_volume_scaled:,.0f} m³")
        print(f"  -- Scale factor:     {float(flt_multiplier):.1f}x")
        print(f"  -- Output: {str_output_filepath}")

    return HydrographScaleResult(
        output_path=str_output_filepath,
        multiplier=float(flt_multiplier),
        original_volume=flt_volume_original,
        scaled_volume=flt_volume_scaled,
        skipped_rows=len(list_skipped)
    )
# .........................................................


#~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
if __name__ == '__main__':

    flt_start_run = time.time()

    parser = argparse.ArgumentParser(description='========= SCALE HYDROGRAPH =========')

    parser.add_argument('-i',
                        dest = "str_hydrograph_filepath",
                        help=r'REQUIRED: Input hydrograph Example: ./DATA/hydrograph.txt',
                        required=True,
                        metavar='FILE',
                        type=lambda x: is_valid_file(parser, x))

    parser.add_argument('-o',
                        dest = "str_output_filepath",
                        help=r'REQUIRED: Scaled hydrograph Example: ./DATA/hydrograph_scaled.txt',
                        required=True,
                        metavar='FILE')

    parser.add_argument('-m',
                        dest = "flt_multiplier",
                        help=r'OPTIONAL: Volume multiplier Default: 1.0',
                        required=False,
                        default=1.0,
                        metavar='FLOAT',
                        type=float)

    parser.add_argument('-r',
                        dest = "b_print_output",
                        help=r'OPTIONAL: Print output messages Default: True',
                        required=False,
                        default=True,
                        metavar='T/F',type=fn_str_to_bool)

    args = vars(parser.parse_args())

    fn_scale_hydrograph_01(args['str_hydrograph_filepath'],
                           args['str_output_filepath'],
                           args['flt_multiplier'],
                           args['b_print_output'])

    flt_end_run = time.time()
    flt_time_pass = (flt_end_run - flt_start_run) // 1
    time_pass = datetime.timedelta(seconds=flt_time_pass)

    print('Compute Time: ' + str(time_pass))
#~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
