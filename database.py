import json
import logging
import uuid
from contextlib import contextmanager

import mysql.connector
from mysql.connector import pooling

from scoring import ScoringRecord

logger = logging.getLogger(__name__)


class StoreUnavailable(Exception):
    """The MySQL store could not be reached or rejected a statement."""


def _decode_json(value):
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode('utf-8')
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return None


def _encode_json(value):
    return None if value is None else json.dumps(value, ensure_ascii=False)


class Database:
    """Connection pool plus the queries the try-out needs.

    Built once at startup; ``from_settings`` returns None when no DB_HOST is
    configured, which callers treat as "scoring from local files only".
    """

    def __init__(self, host, user, password, database, port=3306, pool_size=5):
        self.config = {
            'host': host,
            'port': port,
            'user': user,
            'password': password,
            'database': database,
            'pool_name': 'ielts_pool',
            'pool_size': pool_size,
        }
        self.connection_pool = None

    @classmethod
    def from_settings(cls, settings):
        if not settings.database_configured:
            return None
        return cls(
            host=settings.db_host,
            user=settings.db_user,
            password=settings.db_password,
            database=settings.db_name,
            port=settings.db_port,
            pool_size=settings.db_pool_size,
        )

    def init_db(self):
        """Create the database if needed, open the pool and create tables."""
        try:
            conn = mysql.connector.connect(
                host=self.config['host'],
                port=self.config['port'],
                user=self.config['user'],
                password=self.config['password'],
            )
            cursor = conn.cursor()
            cursor.execute(
                f"CREATE DATABASE IF NOT EXISTS `{self.config['database']}` "
                "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
            cursor.close()
            conn.close()
            self.connection_pool = pooling.MySQLConnectionPool(**self.config)
        except mysql.connector.Error as e:
            raise StoreUnavailable(f"Cannot open database pool: {e}") from e

        self.create_tables()

    def get_connection(self):
        if self.connection_pool is None:
            self.init_db()
        return self.connection_pool.get_connection()

    @contextmanager
    def cursor(self, dictionary=False):
        try:
            conn = self.get_connection()
        except mysql.connector.Error as e:
            raise StoreUnavailable(str(e)) from e
        try:
            cursor = conn.cursor(dictionary=dictionary)
            try:
                yield cursor
                conn.commit()
            finally:
                cursor.close()
        except mysql.connector.Error as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            conn.close()

    def create_tables(self):
        with self.cursor() as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS tests (
                    test_id VARCHAR(100) PRIMARY KEY,
                    title VARCHAR(255) NOT NULL,
                    meta JSON,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS questions (
                    test_id VARCHAR(100) NOT NULL,
                    q_id VARCHAR(100) NOT NULL,
                    section_id VARCHAR(100),
                    q_type VARCHAR(50) NOT NULL,
                    prompt_md TEXT,
                    extra JSON,
                    correct_json JSON,
                    PRIMARY KEY (test_id, q_id)
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS submissions (
                    submission_id CHAR(36) PRIMARY KEY,
                    test_id VARCHAR(100) NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS submission_answers (
                    id INT AUTO_INCREMENT PRIMARY KEY,
                    submission_id CHAR(36) NOT NULL,
                    q_id VARCHAR(100) NOT NULL,
                    answer_json JSON,
                    score INT NOT NULL DEFAULT 0,
                    max_score INT NOT NULL DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

    # Scoring records
    def get_scoring_records(self, test_id):
        with self.cursor(dictionary=True) as cursor:
            cursor.execute(
                "SELECT q_id, q_type, correct_json FROM questions WHERE test_id = %s",
                (test_id,)
            )
            rows = cursor.fetchall()
        return [
            ScoringRecord(q_id=row['q_id'], q_type=row['q_type'], correct_json=_decode_json(row['correct_json']))
            for row in rows
        ]

    # Submissions
    def create_submission(self, test_id):
        submission_id = str(uuid.uuid4())
        with self.cursor() as cursor:
            cursor.execute(
                "INSERT INTO submissions (submission_id, test_id) VALUES (%s, %s)",
                (submission_id, test_id)
            )
        return submission_id

    def save_submission_answers(self, submission_id, rows):
        """rows: iterable of (q_id, answer, score, max_score)."""
        values = [
            (submission_id, q_id, _encode_json(answer), score, max_score)
            for q_id, answer, score, max_score in rows
        ]
        if not values:
            return
        with self.cursor() as cursor:
            cursor.executemany('''
                INSERT INTO submission_answers (submission_id, q_id, answer_json, score, max_score)
                VALUES (%s, %s, %s, %s, %s)
            ''', values)

    # Seeding
    def upsert_test(self, test_id, title, meta):
        with self.cursor() as cursor:
            cursor.execute('''
                INSERT INTO tests (test_id, title, meta) VALUES (%s, %s, %s)
                ON DUPLICATE KEY UPDATE title = VALUES(title), meta = VALUES(meta)
            ''', (test_id, title, _encode_json(meta)))

    def upsert_question(self, test_id, q_id, section_id, q_type, prompt_md, extra, correct_json):
        with self.cursor() as cursor:
            cursor.execute('''
                INSERT INTO questions (test_id, q_id, section_id, q_type, prompt_md, extra, correct_json)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    section_id = VALUES(section_id),
                    q_type = VALUES(q_type),
                    prompt_md = VALUES(prompt_md),
                    extra = VALUES(extra),
                    correct_json = VALUES(correct_json)
            ''', (test_id, q_id, section_id, q_type, prompt_md, _encode_json(extra), _encode_json(correct_json)))
