"""
Unit tests for MapExecutor
"""

import os
import json
import logging
import threading
from collections import Counter
from dataclasses import replace
from unittest.mock import patch

import pytest

from category_mr.common import counters as names
from category_mr.common.errors import InfrastructureError
from category_mr.common.records import Record, ScanRange
from category_mr.source.record_source import InMemorySource, RecordSource
from category_mr.worker.extractor import extract as real_extract
from category_mr.worker.map_executor import MapExecutor, partition_for

GROUP = 'CategoryCount'


def make_executor(records, config, temp_dir, cancel_event=None, task_id=0):
    source = InMemorySource(records)
    return MapExecutor(
        task_id=task_id,
        job_id='test-job',
        source=source,
        scan_range=ScanRange(0, len(records)),
        config=config,
        intermediate_dir=os.path.join(temp_dir, 'intermediate'),
        cancel_event=cancel_event,
    )


def read_pairs(files):
    pairs = []
    for path in files.values():
        with open(path) as f:
            for line in f:
                record = json.loads(line)
                pairs.append((record['key'], record['value']))
    return pairs


class TestMapExecutorEmission:
    """Tests for the pairs a map task emits"""

    def test_emits_one_pair_per_subcategory(self, job_config, temp_dir, make_product):
        records = [make_product('r1', ['Clothing, Shoes & Jewelry', 'Men', 'Shirts'])]
        result = make_executor(records, job_config, temp_dir).execute()

        assert result['success'] is True
        assert sorted(read_pairs(result['intermediate_files'])) == [('Men', 1), ('Shirts', 1)]

    def test_filtered_record_emits_nothing_and_logs_nothing(self, job_config, temp_dir, make_product, caplog):
        records = [make_product('r1', ['Books', 'Fiction'])]
        with caplog.at_level(logging.ERROR):
            result = make_executor(records, job_config, temp_dir).execute()

        assert result['success'] is True
        assert result['intermediate_files'] == {}
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert result['counters'].get(GROUP, names.RECORDS_FILTERED) == 1

    def test_pairs_routed_to_their_partition(self, job_config, temp_dir, sample_records):
        result = make_executor(sample_records, job_config, temp_dir).execute()

        for partition, path in result['intermediate_files'].items():
            assert os.path.basename(path) == f"map-0-reduce-{partition}.txt"
            for key, _ in read_pairs({partition: path}):
                assert partition_for(key, job_config.num_reduce_tasks) == partition

    def test_blank_subcategories_are_dropped(self, job_config, temp_dir, make_product):
        records = [make_product('r1', ['Clothing, Shoes & Jewelry', ' ', '', 'Men'])]
        result = make_executor(records, job_config, temp_dir).execute()

        assert read_pairs(result['intermediate_files']) == [('Men', 1)]
        assert result['counters'].get(GROUP, names.BLANK_SUBCATEGORIES) == 2

    def test_combiner_sums_per_key(self, job_config, temp_dir, make_product):
        config = replace(job_config, use_combiner=True)
        records = [make_product(f'r{i}', ['Clothing, Shoes & Jewelry', 'Men']) for i in range(5)]
        result = make_executor(records, config, temp_dir).execute()

        assert read_pairs(result['intermediate_files']) == [('Men', 5)]


class TestMapExecutorErrors:
    """Bad records are logged and skipped"""

    def test_malformed_payload_logged_and_counted(self, job_config, temp_dir, caplog):
        records = [Record('bad-row', b'not-json')]
        with caplog.at_level(logging.ERROR):
            result = make_executor(records, job_config, temp_dir).execute()

        assert result['success'] is True
        assert result['intermediate_files'] == {}
        errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert len(errors) == 1
        assert 'bad-row' in errors[0].getMessage()
        assert 'MALFORMED_PAYLOAD' in errors[0].getMessage()
        assert result['counters'].get(GROUP, names.ROWS_PROCESSED) == 1
        assert result['counters'].get(GROUP, 'Malformed Payload') == 1

    def test_rows_processed_counts_every_record(self, job_config, temp_dir, sample_records):
        result = make_executor(sample_records, job_config, temp_dir).execute()

        counters = result['counters']
        assert counters.get(GROUP, names.ROWS_PROCESSED) == len(sample_records)
        assert counters.get(GROUP, names.RECORDS_MATCHED) == 5
        assert counters.get(GROUP, names.RECORDS_FILTERED) == 2
        assert counters.get(GROUP, 'Malformed Payload') == 1
        assert counters.get(GROUP, 'Missing Field') == 1
        assert counters.get(GROUP, 'Empty Category') == 1
        assert counters.get(GROUP, names.PAIRS_EMITTED) == 9

    def test_unexpected_exception_does_not_stop_partition(self, job_config, temp_dir, make_product):
        records = [make_product('r1', ['Clothing, Shoes & Jewelry', 'Men']),
                   make_product('r2', ['Clothing, Shoes & Jewelry', 'Women'])]
        calls = []

        def flaky_extract(payload, filter_value):
            calls.append(payload)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return real_extract(payload, filter_value)

        with patch('category_mr.worker.map_executor.extract', side_effect=flaky_extract):
            result = make_executor(records, job_config, temp_dir).execute()

        assert result['success'] is True
        assert read_pairs(result['intermediate_files']) == [('Women', 1)]
        assert result['counters'].get(GROUP, names.ROWS_PROCESSED) == 2
        assert result['counters'].get(GROUP, names.UNEXPECTED_ERRORS) == 1

    def test_unreadable_source_fails_task(self, job_config, temp_dir):
        class BrokenSource(RecordSource):
            def open_partition_scan(self, scan_range, options=None):
                raise InfrastructureError("region server unreachable")

        executor = MapExecutor(0, 'test-job', BrokenSource(), ScanRange(0, 1), job_config,
                               os.path.join(temp_dir, 'intermediate'))
        result = executor.execute()

        assert result['success'] is False
        assert 'unreachable' in result['error_message']

    def test_scan_uses_configured_column(self, job_config, temp_dir, sample_records, caplog):
        config = replace(job_config, payload_column='meta:json')
        executor = make_executor(sample_records, config, temp_dir)
        seen = []
        scan = executor.source.open_partition_scan

        def recording_scan(scan_range, options):
            seen.append(options)
            return scan(scan_range, options)

        executor.source.open_partition_scan = recording_scan
        with caplog.at_level(logging.INFO):
            assert executor.execute()['success'] is True

        assert [o.column for o in seen] == ['meta:json']
        assert seen[0].caching == job_config.scan_caching
        assert 'column meta:json' in caplog.text

    def test_cancel_event_stops_task(self, job_config, temp_dir, sample_records):
        cancel = threading.Event()
        cancel.set()
        result = make_executor(sample_records, job_config, temp_dir, cancel_event=cancel).execute()

        assert result['success'] is False
        assert result['cancelled'] is True
        assert result['intermediate_files'] == {}


class TestMapExecutorRetry:
    """A re-run attempt replaces the previous attempt's output"""

    def test_rerun_produces_identical_files(self, job_config, temp_dir, sample_records):
        executor = make_executor(sample_records, job_config, temp_dir)
        first = executor.execute()
        first_pairs = Counter(read_pairs(first['intermediate_files']))

        second = executor.execute()

        assert second['intermediate_files'] == first['intermediate_files']
        assert Counter(read_pairs(second['intermediate_files'])) == first_pairs
        assert second['counters'].get(GROUP, names.ROWS_PROCESSED) == len(sample_records)
        leftovers = [f for f in os.listdir(os.path.join(temp_dir, 'intermediate')) if f.endswith('.tmp')]
        assert leftovers == []


@pytest.mark.parametrize('key', ['Men', 'Shirts', 'Jewelry', 'Ünïcode'])
def test_partition_for_is_stable(key):
    assert partition_for(key, 7) == partition_for(key, 7)
    assert 0 <= partition_for(key, 7) < 7
