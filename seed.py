"""
Seed a test pack into the database.

Upserts the test and every question (with its correct answer when an
answers.json is given). Without answers.json, writes answers_template.json
and answers_template.csv next to test.json so the answer key can be filled in.

Run: python seed.py data/tests/<test_id>/test.json [data/tests/<test_id>/answers.json]
"""
import argparse
import csv
import json
import logging
import sys
from pathlib import Path

from config import load_settings
from database import Database, StoreUnavailable
from logging_config import configure_logging
from scoring import blank_answer_key

logger = logging.getLogger(__name__)


def read_json(path):
    with open(path, encoding='utf-8') as fh:
        return json.load(fh)


def question_rows(pack, answers=None):
    """Yield one dict per question, ready for Database.upsert_question."""
    for section in pack.get('sections') or []:
        for question in section.get('questions') or []:
            q_id = question['q_id']
            yield {
                'q_id': q_id,
                'section_id': section.get('section_id'),
                'q_type': question.get('q_type') or '',
                'prompt_md': question.get('prompt_md'),
                'extra': {
                    'section_type': section.get('type'),
                    'instructions_md': section.get('instructions_md'),
                    'audio_src': section.get('audio_src'),
                    'passage_src_md': section.get('passage_src_md'),
                    'layout': section.get('layout'),
                    'assets': section.get('assets'),
                    'options': question.get('options'),
                    'options_letters': question.get('options_letters'),
                    'options_paragraphs': question.get('options_paragraphs'),
                    'options_labels': question.get('options_labels'),
                    'expected': question.get('expected'),
                },
                'correct_json': answers.get(q_id) if answers is not None else None,
            }


def write_templates(pack, base_dir):
    """Write blank answer keys for every question; returns the two paths."""
    template = {}
    for section in pack.get('sections') or []:
        for question in section.get('questions') or []:
            template[question['q_id']] = blank_answer_key(question.get('q_type'))

    base_dir = Path(base_dir)
    json_path = base_dir / 'answers_template.json'
    csv_path = base_dir / 'answers_template.csv'
    json_path.write_text(json.dumps(template, indent=2, ensure_ascii=False), encoding='utf-8')
    with open(csv_path, 'w', newline='', encoding='utf-8') as fh:
        writer = csv.writer(fh, quoting=csv.QUOTE_ALL)
        writer.writerow(['q_id', 'correct_json'])
        for q_id, shape in template.items():
            writer.writerow([q_id, json.dumps(shape, separators=(',', ':'))])
    return json_path, csv_path


def seed(database, pack, answers=None):
    database.upsert_test(pack['test_id'], pack.get('title') or pack['test_id'], {
        'timing': pack.get('timing'),
        'ui_constraints': pack.get('ui_constraints'),
    })
    count = 0
    for row in question_rows(pack, answers):
        database.upsert_question(test_id=pack['test_id'], **row)
        count += 1
    return count


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed a test pack into the database.")
    parser.add_argument("test_json", help="Path to the test manifest (test.json)")
    parser.add_argument("answers_json", nargs="?", help="Optional answer key (answers.json)")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)

    try:
        pack = read_json(args.test_json)
        answers = None
        if args.answers_json and Path(args.answers_json).exists():
            answers = read_json(args.answers_json)
    except (OSError, ValueError) as e:
        print(f"Cannot read test pack: {e}")
        return 1
    if not isinstance(pack, dict) or not pack.get('test_id'):
        print("test.json must be an object with a test_id")
        return 1

    database = Database.from_settings(settings)
    if database is None:
        print("Set DB_HOST (and DB_USER, DB_PASSWORD, DB_NAME) in .env")
        return 1

    logger.info("Seeding test %s from %s", pack.get('test_id'), args.test_json)
    try:
        count = seed(database, pack, answers)
    except StoreUnavailable as e:
        print(f"Database error: {e}")
        return 1
    logger.info("Inserted/updated %d questions", count)

    if answers is None:
        json_path, csv_path = write_templates(pack, Path(args.test_json).parent)
        print("No answers.json provided.")
        print(f"Created: {json_path}")
        print(f"Created: {csv_path}")
        print(f"Fill these and re-run with: python seed.py {args.test_json} <answers.json>")
    else:
        print(f"Merged answers from: {args.answers_json}")
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
