"""
Unit tests for configuration reading, sweep expansion and the
main workflow entry point.
"""

import configparser

import pytest

from coarse2fine_00 import (DICT_GLOBAL_SECTION_SCHEMA,
                            DICT_LOCAL_SECTION_SCHEMA,
                            DICT_THREE_PHASE_SCHEMA,
                            fn_coarse2fine_00,
                            fn_float_label,
                            fn_list_runs,
                            fn_read_all_params)
from c2f_errors import InvalidFlowClass
from stage_driver_06 import DriverState


def write_config(path, dict_schema, dict_params, list_skip=()):
    config = configparser.ConfigParser()
    for section_name, keys in dict_schema.items():
        if section_name in list_skip:
            continue
        config[section_name] = {key: dict_params.get(key, '') for key in keys}
    with open(path, 'w') as f:
        config.write(f)
    return str(path)


@pytest.fixture
def config_files(tmp_path, all_params):
    """Write GLOBAL / LOCAL ini files holding all_params."""
    def _write(dict_overrides=None, list_skip=()):
        dict_params = {**all_params, **(dict_overrides or {})}
        str_global = write_config(tmp_path / "global_config.ini", DICT_GLOBAL_SECTION_SCHEMA,
                                  dict_params, list_skip)
        dict_local_schema = {**DICT_LOCAL_SECTION_SCHEMA, **DICT_THREE_PHASE_SCHEMA}
        str_local = write_config(tmp_path / "local_config.ini", dict_local_schema,
                                 dict_params, list_skip)
        return str_global, str_local
    return _write


class TestReadAllParams:

    def test_reads_both_files(self, config_files, all_params):
        str_global, str_local = config_files()

        dict_all_params = fn_read_all_params(str_global, str_local)

        assert dict_all_params['flow_thresh'] == '0.005'
        assert dict_all_params['cell_fine'] == '1'
        assert dict_all_params['run_name'] == 'wc_1phase'
        assert dict_all_params['dtm_fine'] == all_params['dtm_fine']
        assert 'density' not in dict_all_params

    def test_three_phase_section_read_when_needed(self, config_files):
        str_global, str_local = config_files({'phases': '3', 'density': '2700,1800,1000',
                                              'friction': '30,0,0,12,0,0,0,0,0.05'})

        dict_all_params = fn_read_all_params(str_global, str_local)

        assert dict_all_params['density'] == '2700,1800,1000'

    def test_missing_section(self, config_files):
        str_global, str_local = config_files(list_skip=('engine',))

        with pytest.raises(KeyError, match=r"Missing \[engine\] section in GLOBAL config"):
            fn_read_all_params(str_global, str_local)

    def test_missing_required_value(self, config_files):
        str_global, str_local = config_files({'dtm_fine': ''})

        with pytest.raises(KeyError, match="dtm_fine"):
            fn_read_all_params(str_global, str_local)


class TestListRuns:

    def test_single_run_keeps_name(self, all_params):
        assert fn_list_runs(all_params) == [('wc_1phase', '2', 1.0)]

    def test_sweep_names_are_unique(self, all_params):
        all_params.update(flow_classes='2,3', volume_multipliers='1.0,1.5')

        list_runs = fn_list_runs(all_params)

        assert [name for name, _, _ in list_runs] == [
            'wc_1phase_fc2_x1p0', 'wc_1phase_fc2_x1p5',
            'wc_1phase_fc3_x1p0', 'wc_1phase_fc3_x1p5',
        ]
        assert list_runs[1][1:] == ('2', 1.5)

    def test_close_multipliers_get_distinct_names(self, all_params):
        all_params.update(volume_multipliers='1.0000001,1.0000002')

        list_names = [name for name, _, _ in fn_list_runs(all_params)]

        assert len(set(list_names)) == 2

    @pytest.mark.parametrize("str_classes, str_multipliers", [
        ('2', '1,1.0'),
        ('2,2', '1.5'),
    ])
    def test_duplicate_entries_rejected(self, all_params, str_classes, str_multipliers):
        all_params.update(flow_classes=str_classes, volume_multipliers=str_multipliers)

        with pytest.raises(ValueError, match="same run name"):
            fn_list_runs(all_params)

    def test_three_phase_ignores_flow_classes(self, all_params):
        all_params.update(phases='3', flow_classes='2,3', volume_multipliers='1.0')

        assert fn_list_runs(all_params) == [('wc_1phase', None, 1.0)]

    @pytest.mark.parametrize("flt_value, str_label", [(1.0, '1p0'), (1.5, '1p5'), (0.25, '0p25')])
    def test_float_label(self, flt_value, str_label):
        assert fn_float_label(flt_value) == str_label


class TestCoarse2Fine:

    def test_single_workflow(self, config_files, fake_engine):
        str_global, str_local = config_files()

        list_results = fn_coarse2fine_00(str_global, str_local, False, fn_engine=fake_engine)

        assert len(list_results) == 1
        assert list_results[0].ok
        assert fake_engine.stages == ['coarse', 'fine']

    def test_sequential_sweep(self, config_files, fake_engine, capsys):
        str_global, str_local = config_files({'flow_classes': '1,4', 'volume_multipliers': '0.5'})

        list_results = fn_coarse2fine_00(str_global, str_local, False, fn_engine=fake_engine)

        assert [r.run_name for r in list_results] == ['wc_1phase_fc1_x0p5', 'wc_1phase_fc4_x0p5']
        assert all(r.ok for r in list_results)
        assert len(fake_engine.calls) == 4
        assert 'Sweep summary' in capsys.readouterr().out

    def test_parallel_sweep(self, config_files, fake_engine):
        str_global, str_local = config_files({'flow_classes': '1,2,3', 'volume_multipliers': '1.0,2.0',
                                              'max_workers': '3'})

        list_results = fn_coarse2fine_00(str_global, str_local, True, fn_engine=fake_engine)

        assert len(list_results) == 6
        assert all(r.state is DriverState.DONE for r in list_results)
        assert len({r.dict_paths['dtm_fine_clip'] for r in list_results}) == 6
        assert sorted(fake_engine.stages) == ['coarse'] * 6 + ['fine'] * 6

    def test_one_bad_run_does_not_stop_sweep(self, config_files, fake_engine):
        str_global, str_local = config_files({'flow_classes': '2,9'})

        list_results = fn_coarse2fine_00(str_global, str_local, False, fn_engine=fake_engine)

        assert list_results[0].ok
        assert list_results[1].state is DriverState.FAILED
        assert isinstance(list_results[1].error, InvalidFlowClass)
        assert fake_engine.stages == ['coarse', 'fine']
