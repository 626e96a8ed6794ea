"""
Unit tests for counters and job configuration
"""

import threading

import pytest

from category_mr.common.config import DEFAULT_FILTER_VALUE, JobConfig
from category_mr.common.counters import Counters
from category_mr.common.errors import UsageError


class TestCounters:

    def test_increment_and_get(self):
        counters = Counters()
        counters.increment('Q', 'Rows Processed')
        counters.increment('Q', 'Rows Processed', 4)

        assert counters.get('Q', 'Rows Processed') == 5
        assert counters.get('Q', 'missing') == 0
        assert counters.get('missing', 'missing') == 0

    def test_merge(self):
        a, b = Counters(), Counters()
        a.increment('Q', 'x', 2)
        b.increment('Q', 'x', 3)
        b.increment('R', 'y')

        a.merge(b)

        assert a.as_dict() == {'Q': {'x': 5}, 'R': {'y': 1}}

    def test_concurrent_increments(self):
        counters = Counters()

        def work():
            for _ in range(1000):
                counters.increment('Q', 'n')

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert counters.get('Q', 'n') == 8000

    def test_format_lists_groups(self):
        counters = Counters()
        counters.increment('CategoryCount', 'Rows Processed', 3)
        text = counters.format()

        assert text.splitlines()[0] == 'Counters: 1'
        assert '\tCategoryCount' in text
        assert '\t\tRows Processed=3' in text


class TestJobConfig:

    def test_defaults(self, monkeypatch):
        for name in ('CATEGORY_MR_FILTER', 'CATEGORY_MR_MAP_TASKS', 'CATEGORY_MR_SHUFFLE_PORT',
                     'CATEGORY_MR_CACHE_BLOCKS', 'CATEGORY_MR_SCAN_CACHING'):
            monkeypatch.delenv(name, raising=False)
        config = JobConfig()

        assert config.filter_value == DEFAULT_FILTER_VALUE
        assert config.num_map_tasks == 4
        assert config.shuffle_port is None
        assert config.scan_options.caching == 500
        assert config.scan_options.cache_blocks is False

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv('CATEGORY_MR_FILTER', 'Books')
        monkeypatch.setenv('CATEGORY_MR_REDUCE_TASKS', '7')
        monkeypatch.setenv('CATEGORY_MR_CACHE_BLOCKS', 'true')
        monkeypatch.setenv('CATEGORY_MR_SHUFFLE_PORT', '50060')
        config = JobConfig()

        assert config.filter_value == 'Books'
        assert config.num_reduce_tasks == 7
        assert config.cache_blocks is True
        assert config.shuffle_port == 50060

    def test_payload_column_reaches_scan_options(self, monkeypatch):
        monkeypatch.setenv('CATEGORY_MR_COLUMN', 'meta:json')
        config = JobConfig()

        assert config.payload_column == 'meta:json'
        assert config.scan_options.column == 'meta:json'

    def test_bad_integer_in_environment(self, monkeypatch):
        monkeypatch.setenv('CATEGORY_MR_MAX_WORKERS', 'many')
        with pytest.raises(UsageError):
            JobConfig()

    @pytest.mark.parametrize('overrides', [
        {'filter_value': '   '},
        {'counter_group': ''},
        {'num_map_tasks': 0},
        {'max_task_attempts': -1},
        {'scan_caching': 0},
        {'shuffle_port': 70000},
        {'payload_column': 'product_data'},
    ])
    def test_validate_rejects(self, job_config, overrides):
        for name, value in overrides.items():
            setattr(job_config, name, value)
        with pytest.raises(UsageError):
            job_config.validate()

    def test_validate_accepts_fixture(self, job_config):
        job_config.validate()
