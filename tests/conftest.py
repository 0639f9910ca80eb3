import json

import pytest
from fastapi.testclient import TestClient

from database import StoreUnavailable
from exports import ResultsExporter
from scoring import ScoringRecord
from testpacks import TestPackStore

TEST_ID = 'sample-test'

MANIFEST = {
    'test_id': TEST_ID,
    'title': 'Sample Try Out',
    'timing': {'listening_total_minutes': 2, 'reading_total_minutes': 3},
    'ui_constraints': {'audio_controls': {'allow_seek': False, 'show_remaining': True}},
    'sections': [
        {
            'section_id': 'L1',
            'type': 'listening',
            'title': 'Listening 1',
            'instructions_md': 'Listen **once**.',
            'audio_src': 'assets/part1.mp3',
            'assets': {'map': 'assets/map.png'},
            'questions': [
                {'q_id': 'Q1', 'q_type': 'short_text', 'prompt_md': 'Capital of France?'},
                {'q_id': 'Q2', 'q_type': 'mcq_single', 'prompt_md': 'Pick one', 'options': ['a', 'b', 'c']},
                {'q_id': 'Q3', 'q_type': 'map_labeling', 'prompt_md': 'Car park', 'options_letters': ['A', 'B', 'C']},
            ],
        },
        {
            'section_id': 'R1',
            'type': 'reading',
            'title': 'Reading 1',
            'passage_src_md': 'passage.md',
            'layout': {'columns': 2, 'reading_order': 'passage_first'},
            'questions': [
                {'q_id': 'Q4', 'q_type': 'true_false_not_given', 'prompt_md': 'Claim'},
                {'q_id': 'Q5', 'q_type': 'paragraph_match', 'options_paragraphs': ['A', 'B']},
            ],
        },
    ],
}

ANSWERS = {
    'Q1': {'accepted': ['Paris'], 'case_insensitive': True, 'trim': True},
    'Q2': {'correct_option_index': 2},
    'Q3': {'correct_letter': 'B'},
    'Q4': {'label': 'NOT GIVEN'},
    'Q5': {'correct_paragraph': 'A'},
    'ORPHAN': {'label': 'TRUE'},
}


def write_pack(root, test_id=TEST_ID, manifest=MANIFEST, answers=ANSWERS, passage='Paragraph **A** text.'):
    pack_dir = root / test_id
    (pack_dir / 'assets').mkdir(parents=True)
    (pack_dir / 'test.json').write_text(json.dumps(manifest), encoding='utf-8')
    if answers is not None:
        (pack_dir / 'answers.json').write_text(json.dumps(answers), encoding='utf-8')
    if passage is not None:
        (pack_dir / 'passage.md').write_text(passage, encoding='utf-8')
    (pack_dir / 'assets' / 'map.png').write_bytes(b'\x89PNG fake')
    return pack_dir


class FakeDatabase:
    """In-memory stand-in for database.Database."""

    def __init__(self, records=None, fail_on=()):
        self.records = list(records or [])
        self.fail_on = set(fail_on)
        self.submissions = []
        self.answer_rows = {}

    def _check(self, operation):
        if operation in self.fail_on:
            raise StoreUnavailable(f'{operation} failed')

    def get_scoring_records(self, test_id):
        self._check('get_scoring_records')
        return list(self.records)

    def create_submission(self, test_id):
        self._check('create_submission')
        submission_id = f'sub-{len(self.submissions) + 1}'
        self.submissions.append((submission_id, test_id))
        return submission_id

    def save_submission_answers(self, submission_id, rows):
        self._check('save_submission_answers')
        self.answer_rows[submission_id] = list(rows)


@pytest.fixture
def tests_root(tmp_path):
    root = tmp_path / 'tests'
    root.mkdir()
    write_pack(root)
    return root


@pytest.fixture
def packs(tests_root):
    return TestPackStore(tests_root, 'default-test')


@pytest.fixture
def exporter(tmp_path):
    return ResultsExporter(tmp_path / 'exports')


@pytest.fixture
def remote_records():
    return [
        ScoringRecord('Q1', 'short_text', {'accepted': ['Paris'], 'case_insensitive': True}),
        ScoringRecord('Q2', 'mcq_single', {'correct_option_index': 2}),
    ]


@pytest.fixture
def client(packs, exporter):
    import app as app_module

    app_module.app.dependency_overrides[app_module.get_packs] = lambda: packs
    app_module.app.dependency_overrides[app_module.get_exporter] = lambda: exporter
    app_module.app.dependency_overrides[app_module.get_database] = lambda: None
    yield TestClient(app_module.app)
    app_module.app.dependency_overrides.clear()
