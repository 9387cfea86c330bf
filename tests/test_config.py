import pytest
import yaml

from pryv.config import ConnectionConfig


def write_yaml(tmp_path, data):
    path = tmp_path / 'connection.yaml'
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_from_yaml_with_defaults(tmp_path):
    config = ConnectionConfig.from_yaml(write_yaml(tmp_path, {'api_endpoint': 'https://tok@alice.pryv.test/'}))
    assert config.api_endpoint == 'https://tok@alice.pryv.test/'
    assert config.chunk_size is None
    assert config.timeout == 30
    assert config.stream_chunk_bytes == 64 * 1024
    assert config.streaming is True
    assert config.extra == {}


def test_from_yaml_with_all_keys(tmp_path):
    config = ConnectionConfig.from_yaml(write_yaml(tmp_path, {
        'api_endpoint': 'https://alice.pryv.test/',
        'chunk_size': 50,
        'timeout': 5,
        'stream_chunk_bytes': 1024,
        'streaming': False,
        'max_upload_bytes': 2048,
        'app_id': 'my-app',
    }))
    assert config.chunk_size == 50
    assert config.timeout == 5
    assert config.stream_chunk_bytes == 1024
    assert config.streaming is False
    assert config.max_upload_bytes == 2048
    assert config.extra == {'app_id': 'my-app'}


def test_missing_endpoint(tmp_path):
    with pytest.raises(KeyError):
        ConnectionConfig.from_yaml(write_yaml(tmp_path, {'chunk_size': 2}))


def test_empty_file(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text('')
    with pytest.raises(KeyError):
        ConnectionConfig.from_yaml(str(path))


@pytest.mark.parametrize('options', [
    {'chunk_size': 0},
    {'chunk_size': -3},
    {'chunk_size': 1.5},
    {'chunk_size': 2.0},
    {'chunk_size': True},
    {'timeout': 0},
    {'stream_chunk_bytes': 0},
    {'max_upload_bytes': 0},
])
def test_invalid_values(options):
    with pytest.raises(ValueError):
        ConnectionConfig(api_endpoint='https://alice.pryv.test/', **options)
