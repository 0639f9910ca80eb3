import pytest

from config import Settings
from database import Database, _decode_json, _encode_json


def test_from_settings_without_host_is_none():
    assert Database.from_settings(Settings()) is None


def test_from_settings_builds_pool_config():
    database = Database.from_settings(Settings(db_host='db.local', db_port=3307, db_pool_size=3))

    assert database.config['host'] == 'db.local'
    assert database.config['port'] == 3307
    assert database.config['pool_size'] == 3
    assert database.config['database'] == 'ielts_tryout'
    assert database.connection_pool is None


@pytest.mark.parametrize('raw,expected', [
    (None, None),
    ('{"label": "TRUE"}', {'label': 'TRUE'}),
    (b'{"correct_option_index": 2}', {'correct_option_index': 2}),
    ({'already': 'decoded'}, {'already': 'decoded'}),
    ('{broken', None),
])
def test_decode_json(raw, expected):
    assert _decode_json(raw) == expected


def test_encode_json():
    assert _encode_json(None) is None
    assert _encode_json('café') == '"café"'
    assert _encode_json({'a': [1]}) == '{"a": [1]}'
