"""
Tests for the category-count and category-top command line tools
"""

import os
import json

import pytest

from category_mr.client import cli, top_n
from category_mr.common.sink import read_results


@pytest.fixture
def run_cli(temp_dir):
    """Run category-count with intermediates kept under temp_dir"""
    shared = os.path.join(temp_dir, 'shared')

    def run(*args):
        return cli.main(list(args) + ['--shared-dir', shared])
    return run


class TestCategoryCountUsage:

    def test_missing_output_is_usage_error(self, capsys):
        assert cli.main([]) == cli.EXIT_USAGE
        assert 'usage:' in capsys.readouterr().err

    def test_blank_output_is_usage_error(self):
        assert cli.main(['  ']) == cli.EXIT_USAGE

    def test_non_positive_task_count_is_usage_error(self, run_cli, temp_dir, sample_table_file):
        code = run_cli(os.path.join(temp_dir, 'out'), '--input', sample_table_file, '--map-tasks', '0')
        assert code == cli.EXIT_USAGE

    def test_bad_environment_default_is_usage_error(self, monkeypatch, temp_dir):
        monkeypatch.setenv('CATEGORY_MR_MAP_TASKS', 'lots')
        assert cli.main([os.path.join(temp_dir, 'out')]) == cli.EXIT_USAGE

    def test_existing_output_is_usage_error(self, run_cli, temp_dir, sample_table_file):
        output = os.path.join(temp_dir, 'out')
        os.makedirs(output)
        open(os.path.join(output, 'old.txt'), 'w').close()

        assert run_cli(output, '--input', sample_table_file) == cli.EXIT_USAGE

    def test_help_exits_cleanly(self):
        assert cli.main(['--help']) == cli.EXIT_OK


class TestCategoryCountRun:

    def test_successful_run(self, run_cli, temp_dir, sample_table_file, expected_totals, capsys):
        output = os.path.join(temp_dir, 'out')
        metrics_file = os.path.join(temp_dir, 'metrics.json')

        code = run_cli(output, '--input', sample_table_file, '--map-tasks', '3',
                       '--reduce-tasks', '2', '--metrics-file', metrics_file)

        assert code == cli.EXIT_OK
        assert read_results(output) == expected_totals
        stdout = capsys.readouterr().out
        assert 'Rows Processed=10' in stdout
        with open(metrics_file) as f:
            assert json.load(f)['num_map_tasks'] == 3

    def test_filter_from_environment(self, run_cli, monkeypatch, temp_dir, sample_table_file):
        monkeypatch.setenv('CATEGORY_MR_FILTER', 'Books')
        output = os.path.join(temp_dir, 'out')

        assert run_cli(output, '--input', sample_table_file) == cli.EXIT_OK
        assert read_results(output) == {'Fiction': 1}

    def test_filter_flag_overrides_environment(self, run_cli, monkeypatch, temp_dir, sample_table_file):
        monkeypatch.setenv('CATEGORY_MR_FILTER', 'Books')
        output = os.path.join(temp_dir, 'out')

        assert run_cli(output, '--input', sample_table_file, '--filter', 'Electronics') == cli.EXIT_OK
        assert read_results(output) == {'Men': 1}

    def test_missing_input_is_job_failure(self, run_cli, temp_dir, capsys):
        output = os.path.join(temp_dir, 'out')

        code = run_cli(output, '--input', os.path.join(temp_dir, 'missing.tsv'))

        assert code == cli.EXIT_FAILED
        assert 'Job failed' in capsys.readouterr().err
        assert not os.path.exists(os.path.join(output, '_SUCCESS'))


class TestCategoryTop:

    def test_ranks_by_count_then_key(self):
        totals = {'b': 2, 'a': 2, 'c': 5, 'd': 1}
        assert top_n.top_n(totals, 3) == [('c', 5), ('a', 2), ('b', 2)]

    def test_prints_top_rows(self, run_cli, temp_dir, sample_table_file, capsys):
        output = os.path.join(temp_dir, 'out')
        run_cli(output, '--input', sample_table_file)
        capsys.readouterr()

        assert top_n.main([output, '-n', '2']) == 0
        assert capsys.readouterr().out.splitlines() == ['Men\t2', 'Shirts\t2']

    def test_saves_plot(self, run_cli, temp_dir, sample_table_file):
        output = os.path.join(temp_dir, 'out')
        plot = os.path.join(temp_dir, 'top.png')
        run_cli(output, '--input', sample_table_file)

        assert top_n.main([output, '--plot', plot]) == 0
        assert os.path.getsize(plot) > 0

    def test_uncommitted_output_is_error(self, temp_dir):
        assert top_n.main([temp_dir]) == 1
