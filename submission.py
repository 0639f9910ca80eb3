"""Scoring and recording of a submitted test attempt.

Correct answers come from the database when it is configured and reachable,
otherwise from the test pack's answers.json. Once answers are scored the
learner always gets the result back: failures while saving the submission
to the database or to the local CSV export only add warnings to the result.
"""

import logging
from dataclasses import dataclass, field

from database import StoreUnavailable
from scoring import score_question
from testpacks import is_safe_test_id

logger = logging.getLogger(__name__)

NOT_CONFIGURED_WARNING = 'Database credentials are not configured; results were scored locally only.'
UNREACHABLE_WARNING = 'Database is configured but unreachable; results were scored locally only.'
METADATA_WARNING = 'Unable to persist submission metadata to the database.'
ANSWERS_WARNING = 'Unable to persist question-level scoring to the database.'
EXPORT_WARNING = 'Unable to write the local results export.'


class InvalidSubmission(Exception):
    """The test id or request body was rejected before any scoring."""


class NoScoringData(Exception):
    """Neither the database nor the test pack has correct answers for the test."""


@dataclass(frozen=True)
class SubmissionResult:
    test_id: str
    submission_id: str | None
    total_score: int
    max_score: int
    answered: int
    question_count: int
    warnings: list = field(default_factory=list)
    details: list = field(default_factory=list)

    def to_dict(self):
        return {
            'test_id': self.test_id,
            'submission_id': self.submission_id,
            'total_score': self.total_score,
            'max_score': self.max_score,
            'answered': self.answered,
            'question_count': self.question_count,
            'warnings': list(self.warnings),
            'per_question': {
                detail.q_id: {
                    'score': detail.score,
                    'max_score': detail.max_score,
                    'is_correct': detail.is_correct,
                    'correct_answer': detail.correct_answer,
                }
                for detail in self.details
            },
        }


def extract_answers(payload):
    """Pull the q_id -> answer map out of a decoded request body."""
    if not isinstance(payload, dict):
        raise InvalidSubmission('Invalid JSON payload')
    answers = payload.get('answers', {})
    if not isinstance(answers, dict):
        raise InvalidSubmission('Answers must be an object keyed by q_id')
    return answers


def count_answered(answers):
    return sum(1 for value in answers.values() if value is not None and value != '')


class SubmissionService:
    """Scores submissions; one instance is shared by all requests."""

    def __init__(self, packs, exporter, database=None):
        self.packs = packs
        self.exporter = exporter
        self.database = database

    def _remote_records(self, test_id):
        """Returns (records, operational)."""
        if self.database is None:
            return [], False
        try:
            return self.database.get_scoring_records(test_id), True
        except StoreUnavailable:
            logger.warning("Scoring records for %s unavailable from database", test_id, exc_info=True)
            return [], False

    def _persist_remote(self, test_id, details, answers, warnings):
        try:
            submission_id = self.database.create_submission(test_id)
        except StoreUnavailable:
            logger.warning("Could not create submission for %s", test_id, exc_info=True)
            warnings.append(METADATA_WARNING)
            return None

        rows = [(d.q_id, answers.get(d.q_id), d.score, d.max_score) for d in details]
        try:
            self.database.save_submission_answers(submission_id, rows)
        except StoreUnavailable:
            logger.warning("Could not save answers for submission %s", submission_id, exc_info=True)
            warnings.append(ANSWERS_WARNING)
        return submission_id

    def _export(self, test_id, submission_id, details, answers, warnings):
        try:
            self.exporter.append(test_id, submission_id, details, answers)
        except OSError:
            logger.warning("Could not export results for %s", test_id, exc_info=True)
            warnings.append(EXPORT_WARNING)

    def submit(self, test_id, payload):
        if not is_safe_test_id(test_id):
            raise InvalidSubmission('Invalid test id')
        answers = extract_answers(payload)

        records, operational = self._remote_records(test_id)
        if not records:
            records = self.packs.load_scoring_records(test_id) or []
        if not records:
            raise NoScoringData('No scoring data available for this test.')

        details = [score_question(record, answers.get(record.q_id)) for record in records]

        warnings = []
        submission_id = None
        if operational:
            submission_id = self._persist_remote(test_id, details, answers, warnings)
        elif self.database is not None:
            warnings.append(UNREACHABLE_WARNING)
        else:
            warnings.append(NOT_CONFIGURED_WARNING)
        self._export(test_id, submission_id, details, answers, warnings)

        result = SubmissionResult(
            test_id=test_id,
            submission_id=submission_id,
            total_score=sum(d.score for d in details),
            max_score=sum(d.max_score for d in details),
            answered=count_answered(answers),
            question_count=len(details),
            warnings=warnings,
            details=details,
        )
        logger.info(
            "Scored %s: %d/%d (submission %s, %d warnings)",
            test_id, result.total_score, result.max_score, submission_id, len(warnings),
        )
        return result
