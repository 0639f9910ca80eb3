"""Test pack loading.

A test pack is a directory ``<tests_root>/<test_id>/`` holding:

    test.json      the manifest: sections, questions, timing, UI constraints
    answers.json   correct-answer specifications keyed by q_id (never served)
    *.md           reading passages referenced by ``passage_src_md``
    assets/        audio and images, served through /tests/<id>/assets/...

The manifest is translated into frozen dataclasses so the rest of the
application never touches raw manifest keys or filesystem paths.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path

from scoring import ScoringRecord

logger = logging.getLogger(__name__)

MANIFEST_FILE = 'test.json'
ANSWERS_FILE = 'answers.json'
ASSETS_DIR = 'assets'

LISTENING = 'listening'
READING = 'reading'

_SAFE_TEST_ID = re.compile(r'^[A-Za-z0-9_-]+$')
_ASSET_PREFIX = re.compile(r'^/?assets/?')


def is_safe_test_id(test_id):
    return isinstance(test_id, str) and _SAFE_TEST_ID.fullmatch(test_id) is not None


def resolve_asset_path(test_id, asset_path):
    """Rewrite a manifest asset reference to its public, test-scoped URL."""
    if not asset_path or not isinstance(asset_path, str):
        return None
    cleaned = _ASSET_PREFIX.sub('', asset_path, count=1)
    return f'/tests/{test_id}/assets/{cleaned}'


def _contained(path, root):
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class Question:
    q_id: str
    q_type: str
    prompt_md: str = ''
    expected: str | None = None
    options: tuple | None = None
    options_letters: tuple | None = None
    options_paragraphs: tuple | None = None
    options_labels: tuple | None = None
    extra: dict | None = None


@dataclass(frozen=True)
class SectionLayout:
    columns: int | None = None
    reading_order: str | None = None


@dataclass(frozen=True)
class Section:
    """One listening or reading section, in manifest order.

    ``audio_src`` is only set on listening sections; ``passage_md`` and
    ``layout`` only on reading sections.
    """

    section_id: str
    type: str
    title: str
    questions: tuple = ()
    instructions_md: str | None = None
    assets: dict | None = None
    audio_src: str | None = None
    passage_md: str | None = None
    layout: SectionLayout | None = None


@dataclass(frozen=True)
class TestTiming:
    __test__ = False

    listening_total_minutes: float | None = None
    reading_total_minutes: float | None = None


@dataclass(frozen=True)
class AudioControls:
    allow_seek: bool = True
    show_remaining: bool = False


@dataclass(frozen=True)
class UiConstraints:
    audio_controls: AudioControls = field(default_factory=AudioControls)
    allow_flag_question: bool = False
    palette: str | None = None


@dataclass(frozen=True)
class TestDefinition:
    __test__ = False

    test_id: str
    title: str
    sections: tuple = ()
    timing: TestTiming | None = None
    ui_constraints: UiConstraints | None = None

    @property
    def listening_sections(self):
        return [section for section in self.sections if section.type == LISTENING]

    @property
    def reading_sections(self):
        return [section for section in self.sections if section.type == READING]

    @property
    def question_ids(self):
        return [question.q_id for section in self.sections for question in section.questions]

    def to_dict(self):
        return asdict(self)


def _tuple_or_none(value):
    if isinstance(value, list):
        return tuple(str(item) for item in value)
    return None


def _pick(data, snake, camel):
    return data.get(snake, data.get(camel))


def _map_question(raw):
    return Question(
        q_id=str(raw['q_id']),
        q_type=str(raw.get('q_type') or ''),
        prompt_md=raw.get('prompt_md') or '',
        expected=raw.get('expected'),
        options=_tuple_or_none(raw.get('options')),
        options_letters=_tuple_or_none(raw.get('options_letters')),
        options_paragraphs=_tuple_or_none(raw.get('options_paragraphs')),
        options_labels=_tuple_or_none(raw.get('options_labels')),
        extra=raw.get('extra') if isinstance(raw.get('extra'), dict) else None,
    )


def _map_assets(test_id, assets):
    if not isinstance(assets, dict):
        return None
    mapped = {}
    for key, value in assets.items():
        url = resolve_asset_path(test_id, value)
        if url:
            mapped[key] = url
    return mapped or None


def _map_timing(raw):
    if not isinstance(raw, dict):
        return None
    return TestTiming(
        listening_total_minutes=_pick(raw, 'listening_total_minutes', 'listeningTotalMinutes'),
        reading_total_minutes=_pick(raw, 'reading_total_minutes', 'readingTotalMinutes'),
    )


def _map_ui_constraints(raw):
    if not isinstance(raw, dict):
        return None
    audio = raw.get('audio_controls') if isinstance(raw.get('audio_controls'), dict) else {}
    return UiConstraints(
        audio_controls=AudioControls(
            allow_seek=audio.get('allow_seek') is not False,
            show_remaining=bool(audio.get('show_remaining')),
        ),
        allow_flag_question=bool(raw.get('allow_flag_question')),
        palette=raw.get('palette'),
    )


class TestPackStore:
    """Read-only access to the test packs stored under one root directory."""

    __test__ = False  # keep pytest from collecting this as a test class

    def __init__(self, root, default_test_id):
        self.root = Path(root).resolve()
        self.default_test_id = default_test_id

    def _pack_dir(self, test_id):
        return self.root / test_id

    def _read_json(self, path):
        with open(path, encoding='utf-8') as fh:
            return json.load(fh)

    def read_manifest(self, test_id):
        if not is_safe_test_id(test_id):
            return None
        try:
            manifest = self._read_json(self._pack_dir(test_id) / MANIFEST_FILE)
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("Unreadable manifest for test %s", test_id, exc_info=True)
            return None
        if not isinstance(manifest, dict) or not isinstance(manifest.get('sections'), list):
            logger.warning("Manifest for test %s has no sections list", test_id)
            return None
        return manifest

    def read_passage(self, test_id, relative_path):
        if not relative_path or not is_safe_test_id(test_id):
            return None
        pack_dir = self._pack_dir(test_id)
        passage_path = (pack_dir / relative_path).resolve()
        if not _contained(passage_path, pack_dir):
            logger.warning("Passage path escapes test %s: %s", test_id, relative_path)
            return None
        try:
            return passage_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not load passage %s for test %s", relative_path, test_id)
            return None

    def _map_section(self, test_id, raw):
        kind = READING if raw.get('type') == READING else LISTENING
        base = dict(
            section_id=str(raw.get('section_id') or ''),
            type=kind,
            title=raw.get('title') or '',
            instructions_md=raw.get('instructions_md'),
            questions=tuple(_map_question(q) for q in raw.get('questions') or []),
            assets=_map_assets(test_id, raw.get('assets')),
        )
        if kind == LISTENING:
            return Section(audio_src=resolve_asset_path(test_id, raw.get('audio_src')), **base)

        layout = raw.get('layout')
        return Section(
            passage_md=self.read_passage(test_id, raw.get('passage_src_md')),
            layout=SectionLayout(
                columns=layout.get('columns'),
                reading_order=layout.get('reading_order'),
            ) if isinstance(layout, dict) else None,
            **base,
        )

    def get(self, test_id):
        """Return the TestDefinition for test_id, or None when there is no such test."""
        manifest = self.read_manifest(test_id)
        if manifest is None:
            return None

        try:
            sections = tuple(self._map_section(test_id, raw) for raw in manifest['sections'])
        except (KeyError, TypeError, AttributeError):
            logger.warning("Malformed section in manifest for test %s", test_id, exc_info=True)
            return None

        return TestDefinition(
            test_id=test_id,
            title=manifest.get('title') or test_id,
            sections=sections,
            timing=_map_timing(manifest.get('timing')),
            ui_constraints=_map_ui_constraints(manifest.get('ui_constraints')),
        )

    def list_ids(self):
        try:
            ids = sorted(
                entry.name for entry in self.root.iterdir()
                if entry.is_dir() and is_safe_test_id(entry.name)
            )
        except OSError:
            ids = []
        return ids or [self.default_test_id]

    def load_scoring_records(self, test_id):
        """Scoring records from answers.json, limited to questions in the manifest.

        Returns None when either file is missing or unreadable.
        """
        manifest = self.read_manifest(test_id)
        if manifest is None:
            return None
        try:
            answers = self._read_json(self._pack_dir(test_id) / ANSWERS_FILE)
        except (OSError, ValueError):
            return None
        if not isinstance(answers, dict):
            return None

        records = []
        for section in manifest['sections']:
            if not isinstance(section, dict):
                continue
            questions = section.get('questions')
            if not isinstance(questions, list):
                continue
            for question in questions:
                q_id = question.get('q_id') if isinstance(question, dict) else None
                if isinstance(q_id, bool) or not isinstance(q_id, (str, int)):
                    continue
                q_id = str(q_id)
                if q_id not in answers:
                    continue
                records.append(ScoringRecord(
                    q_id=q_id,
                    q_type=str(question.get('q_type') or ''),
                    correct_json=answers[q_id],
                ))
        return records

    def asset_file(self, test_id, parts):
        """Resolve an asset request to a file strictly inside the pack's assets dir."""
        if not is_safe_test_id(test_id) or not parts:
            return None
        if any('\x00' in part for part in parts):
            return None
        assets_root = (self._pack_dir(test_id) / ASSETS_DIR).resolve()
        try:
            requested = assets_root.joinpath(*parts).resolve()
        except (OSError, ValueError):
            return None
        if requested == assets_root or not _contained(requested, assets_root):
            return None
        if not requested.is_file():
            return None
        return requested
