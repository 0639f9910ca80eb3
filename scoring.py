"""Answer scoring for IELTS-style question types.

Each question is scored against its correct-answer specification (the
``correct_json`` authored next to the test manifest). The specification is
parsed into one answer-key shape per question type; free-text rules are
the fallback for every type without a dedicated shape. Scoring never raises:
a malformed specification parses into a key that can never match, so a
broken answer key costs the learner that question and nothing else.
"""

import re
import unicodedata
from dataclasses import dataclass, field, replace
from typing import Any

MCQ_SINGLE = 'mcq_single'
MAP_LABELING = 'map_labeling'
PARAGRAPH_MATCH = 'paragraph_match'
MATCH_LIST = 'match_list'
TRUE_FALSE_NOT_GIVEN = 'true_false_not_given'
SHORT_TEXT = 'short_text'
SENTENCE_COMPLETION = 'sentence_completion'
TABLE_COMPLETION = 'table_completion'
DIAGRAM_LABEL = 'diagram_label'

QUESTION_TYPES = frozenset({
    MCQ_SINGLE, MAP_LABELING, PARAGRAPH_MATCH, MATCH_LIST, TRUE_FALSE_NOT_GIVEN,
    SHORT_TEXT, SENTENCE_COMPLETION, TABLE_COMPLETION, DIAGRAM_LABEL,
})

TRUE_FALSE_LABELS = ('TRUE', 'FALSE', 'NOT GIVEN')

# field of correct_json holding the expected label, per label-matched type
_LABEL_FIELDS = {
    PARAGRAPH_MATCH: 'correct_paragraph',
    MATCH_LIST: 'correct_label',
    TRUE_FALSE_NOT_GIVEN: 'label',
}

_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')
_WHITESPACE = re.compile(r'\s+')

MAX_SCORE = 1


@dataclass(frozen=True)
class ScoringRecord:
    """A question id/type paired with its correct-answer specification."""

    q_id: str
    q_type: str
    correct_json: Any = None


@dataclass(frozen=True)
class ScoreDetail:
    q_id: str
    score: int
    max_score: int
    is_correct: bool
    correct_answer: Any = None
    received_answer: Any = None


@dataclass(frozen=True)
class ChoiceKey:
    correct_option_index: int | None = None


@dataclass(frozen=True)
class LetterKey:
    correct_letter: str | None = None


@dataclass(frozen=True)
class LabelKey:
    expected: str | None = None


@dataclass(frozen=True)
class TextKey:
    accepted: tuple = field(default_factory=tuple)
    case_insensitive: bool = False
    trim: bool = True
    punctuation_insensitive: bool = False


def _as_mapping(value):
    return value if isinstance(value, dict) else {}


def _as_integer(value):
    """Return value as an int when it is an integral JSON number, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def parse_answer_key(q_type, correct_json):
    """Turn a raw correct-answer specification into the key for q_type."""
    spec = _as_mapping(correct_json)

    if q_type == MCQ_SINGLE:
        return ChoiceKey(_as_integer(spec.get('correct_option_index')))

    if q_type == MAP_LABELING:
        letter = spec.get('correct_letter')
        return LetterKey(letter.strip().upper() if isinstance(letter, str) else None)

    if q_type in _LABEL_FIELDS:
        label = spec.get(_LABEL_FIELDS[q_type])
        return LabelKey(label.upper() if isinstance(label, str) else None)

    accepted = spec.get('accepted')
    if not isinstance(accepted, list):
        accepted = []
    return TextKey(
        accepted=tuple(item for item in accepted if isinstance(item, str)),
        case_insensitive=bool(spec.get('case_insensitive')),
        trim=spec.get('trim') is not False,
        punctuation_insensitive=bool(spec.get('punctuation_insensitive')),
    )


def _strip_punctuation(value):
    return ''.join(
        ch for ch in value
        if ch.isspace() or unicodedata.category(ch)[0] in ('L', 'N')
    )


def normalize_text(value, case_insensitive=False, trim=True, punctuation_insensitive=False):
    """Normalize a free-text answer for comparison.

    Applying it to its own output returns the same string.
    """
    normalized = value
    if case_insensitive:
        normalized = normalized.lower()
    if punctuation_insensitive:
        normalized = _strip_punctuation(normalized)
    normalized = _WHITESPACE.sub(' ', normalized)
    if trim:
        normalized = normalized.strip()
    return normalized


def parse_choice(answer):
    """Coerce a submitted mcq answer to an option index, or None.

    Strings are read up to the first non-digit, so ``"2abc"`` reads as 2.
    """
    if isinstance(answer, str):
        match = _LEADING_INT.match(answer)
        return int(match.group(1)) if match else None
    return _as_integer(answer)


def _detail(is_correct, correct_answer, received_answer):
    return ScoreDetail(
        q_id='',
        score=MAX_SCORE if is_correct else 0,
        max_score=MAX_SCORE,
        is_correct=is_correct,
        correct_answer=correct_answer,
        received_answer=received_answer,
    )


def _score_choice(key, answer):
    received = parse_choice(answer)
    expected = key.correct_option_index
    is_correct = expected is not None and received is not None and expected == received
    return _detail(is_correct, expected, answer)


def _score_letter(key, answer):
    received = answer.strip().upper() if isinstance(answer, str) else ''
    is_correct = bool(key.correct_letter) and received == key.correct_letter
    return _detail(is_correct, key.correct_letter, answer)


def _score_label(key, answer):
    received = answer.upper() if isinstance(answer, str) else None
    is_correct = bool(key.expected) and received == key.expected
    return _detail(is_correct, key.expected, answer)


def _score_text(key, answer):
    accepted = list(key.accepted)
    if not isinstance(answer, str) or not answer:
        return _detail(False, accepted, answer)

    options = dict(
        case_insensitive=key.case_insensitive,
        trim=key.trim,
        punctuation_insensitive=key.punctuation_insensitive,
    )
    normalized = normalize_text(answer, **options)
    is_correct = any(normalize_text(option, **options) == normalized for option in accepted)
    return _detail(is_correct, accepted, answer)


_SCORERS = {
    ChoiceKey: _score_choice,
    LetterKey: _score_letter,
    LabelKey: _score_label,
    TextKey: _score_text,
}


def score_answer(key, answer):
    return _SCORERS[type(key)](key, answer)


def score_question(record, answer=None):
    """Score one submitted answer against a ScoringRecord."""
    key = parse_answer_key(record.q_type, record.correct_json)
    return replace(score_answer(key, answer), q_id=record.q_id)


def blank_answer_key(q_type):
    """Empty correct-answer shape used to guide answer-key authoring."""
    if q_type in (SHORT_TEXT, SENTENCE_COMPLETION, TABLE_COMPLETION):
        return {
            'accepted': ['<fill>'],
            'case_insensitive': True,
            'trim': True,
            'punctuation_insensitive': True,
        }
    if q_type == DIAGRAM_LABEL:
        return {'accepted': ['<one_word>']}
    if q_type == TRUE_FALSE_NOT_GIVEN:
        return {'label': '<TRUE|FALSE|NOT GIVEN>'}
    if q_type == MCQ_SINGLE:
        return {'correct_option_index': 0}
    if q_type == MAP_LABELING:
        return {'correct_letter': '<A-I>'}
    if q_type == PARAGRAPH_MATCH:
        return {'correct_paragraph': '<A-H>'}
    if q_type == MATCH_LIST:
        return {'correct_label': '<A-D>'}
    return {}
