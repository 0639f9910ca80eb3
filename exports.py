"""Flat CSV export of scored submissions.

Every scored submission appends one row per question to
``<export_dir>/submissions.csv``; rows are never rewritten. The export runs
whether or not the database accepted the submission, so a local copy exists
even when the store is down.
"""

import csv
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# shared by every ResultsExporter instance
_write_lock = threading.Lock()

EXPORT_FILE = 'submissions.csv'
EXPORT_COLUMNS = (
    'exported_at',
    'submission_id',
    'test_id',
    'q_id',
    'answer',
    'is_correct',
    'score',
    'max_score',
    'correct_answer',
)


def _cell(value):
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class ResultsExporter:

    def __init__(self, export_dir):
        self.export_dir = Path(export_dir)

    @property
    def path(self):
        return self.export_dir / EXPORT_FILE

    def append(self, test_id, submission_id, details, answers, exported_at=None):
        """Append one row per ScoreDetail; returns the number of rows written.

        Raises OSError when the export location is not writable.
        """
        exported_at = exported_at or datetime.now(timezone.utc)
        self.export_dir.mkdir(parents=True, exist_ok=True)

        with _write_lock, open(self.path, 'a', newline='', encoding='utf-8') as fh:
            writer = csv.writer(fh)
            if fh.tell() == 0:
                writer.writerow(EXPORT_COLUMNS)
            for detail in details:
                writer.writerow([
                    exported_at.isoformat(),
                    submission_id or '',
                    test_id,
                    detail.q_id,
                    _cell(answers.get(detail.q_id)),
                    'true' if detail.is_correct else 'false',
                    detail.score,
                    detail.max_score,
                    _cell(detail.correct_answer),
                ])
        logger.info("Exported %d rows for test %s to %s", len(details), test_id, self.path)
        return len(details)
