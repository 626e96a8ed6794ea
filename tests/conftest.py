"""
Pytest configuration and shared fixtures
"""

import pytest
import os
import sys
import json
import shutil
import tempfile

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'src'))

from category_mr.common.config import JobConfig
from category_mr.common.records import Record

CLOTHING = "Clothing, Shoes & Jewelry"


def product(row_key, category, **extra):
    """Build a Record whose payload is a product document"""
    document = dict(extra)
    if category is not None:
        document['category'] = category
    return Record(row_key, json.dumps(document).encode('utf-8'))


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    dirpath = tempfile.mkdtemp()
    yield dirpath
    shutil.rmtree(dirpath)


@pytest.fixture
def make_product():
    """Factory fixture for product records"""
    return product


@pytest.fixture
def sample_records():
    """Product rows covering matches, filtered rows and bad payloads"""
    return [
        product('p001', [CLOTHING, 'Men', 'Shirts']),
        product('p002', ['Books', 'Fiction']),
        product('p003', ['  Clothing, Shoes & Jewelry ', 'Women', 'Shirts']),
        Record('p004', b'not-json'),
        product('p005', None, title='no category'),
        product('p006', []),
        product('p007', [CLOTHING, 'Men', 'Shoes', 'Boots']),
        product('p008', [CLOTHING]),
        product('p009', ['Electronics', 'Men']),
        product('p010', [CLOTHING, 'Women', 'Jewelry']),
    ]


@pytest.fixture
def expected_totals():
    """Subcategory totals for sample_records with the clothing filter"""
    return {
        'Men': 2,
        'Shirts': 2,
        'Women': 2,
        'Shoes': 1,
        'Boots': 1,
        'Jewelry': 1,
    }


@pytest.fixture
def sample_table_file(temp_dir, sample_records):
    """Write sample_records as a row_key<TAB>payload table export"""
    filepath = os.path.join(temp_dir, 'products.tsv')
    with open(filepath, 'wb') as f:
        for record in sample_records:
            f.write(record.row_key.encode('utf-8') + b'\t' + record.payload + b'\n')
    return filepath


@pytest.fixture
def job_config(temp_dir):
    """Small job configuration writing intermediates under temp_dir"""
    return JobConfig(
        input_path=os.path.join(temp_dir, 'products.tsv'),
        filter_value=CLOTHING,
        counter_group='CategoryCount',
        num_map_tasks=3,
        num_reduce_tasks=2,
        max_workers=2,
        max_task_attempts=2,
        scan_caching=2,
        cache_blocks=False,
        use_combiner=False,
        shared_dir=os.path.join(temp_dir, 'shared'),
        shuffle_port=None,
    )
