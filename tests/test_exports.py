import csv
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from exports import EXPORT_COLUMNS, ResultsExporter
from scoring import ScoringRecord, score_question

EXPORTED_AT = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def read_rows(path):
    with open(path, newline='', encoding='utf-8') as fh:
        return list(csv.reader(fh))


@pytest.fixture
def details():
    return [
        score_question(ScoringRecord('Q1', 'short_text', {'accepted': ['Paris', 'paris city']}), 'Paris'),
        score_question(ScoringRecord('Q2', 'mcq_single', {'correct_option_index': 2}), 1),
        score_question(ScoringRecord('Q3', 'map_labeling', {'correct_letter': 'B'})),
    ]


def test_first_append_writes_header(exporter, details):
    written = exporter.append('t1', 'sub-1', details, {'Q1': 'Paris', 'Q2': 1}, exported_at=EXPORTED_AT)
    rows = read_rows(exporter.path)

    assert written == 3
    assert tuple(rows[0]) == EXPORT_COLUMNS
    assert rows[1] == [
        '2024-05-01T09:30:00+00:00', 'sub-1', 't1', 'Q1', 'Paris', 'true', '1', '1', '["Paris", "paris city"]',
    ]
    assert rows[2][3:] == ['Q2', '1', 'false', '0', '1', '2']
    assert rows[3][3:] == ['Q3', '', 'false', '0', '1', 'B']


def test_later_appends_keep_single_header(exporter, details):
    exporter.append('t1', 'sub-1', details, {}, exported_at=EXPORTED_AT)
    exporter.append('t1', None, details[:1], {}, exported_at=EXPORTED_AT)
    rows = read_rows(exporter.path)

    assert len(rows) == 5
    assert sum(1 for row in rows if tuple(row) == EXPORT_COLUMNS) == 1
    assert rows[4][1] == ''


def test_creates_export_directory(tmp_path, details):
    exporter = ResultsExporter(tmp_path / 'a' / 'b')
    exporter.append('t1', None, details, {})
    assert exporter.path.exists()


def test_unwritable_location_raises(tmp_path, details):
    blocker = tmp_path / 'blocker'
    blocker.write_text('not a directory', encoding='utf-8')

    with pytest.raises(OSError):
        ResultsExporter(blocker / 'exports').append('t1', None, details, {})


def test_header_not_repeated_for_existing_file(exporter, details):
    exporter.export_dir.mkdir(parents=True)
    exporter.path.write_text(','.join(EXPORT_COLUMNS) + '\r\n', encoding='utf-8')

    exporter.append('t1', 'sub-1', details, {}, exported_at=EXPORTED_AT)
    rows = read_rows(exporter.path)

    assert len(rows) == 4
    assert sum(1 for row in rows if tuple(row) == EXPORT_COLUMNS) == 1


def test_concurrent_first_appends_write_one_header(tmp_path, details):
    export_dir = tmp_path / 'exports'

    def append(n):
        return ResultsExporter(export_dir).append('t1', f'sub-{n}', details, {}, exported_at=EXPORTED_AT)

    with ThreadPoolExecutor(max_workers=8) as pool:
        assert sum(pool.map(append, range(16))) == 48

    rows = read_rows(export_dir / 'submissions.csv')
    assert len(rows) == 49
    assert tuple(rows[0]) == EXPORT_COLUMNS
    assert sum(1 for row in rows if tuple(row) == EXPORT_COLUMNS) == 1
