import json

from judge import config
from judge.constant import Language


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.delenv('QUEUE_SIZE', raising=False)
    settings = config.get_judge_settings(tmp_path / 'missing.json')
    assert settings['QUEUE_SIZE'] == 64
    assert settings['ENGINE_RETRY_COUNT'] == 3
    assert settings['PIPELINE_ATTEMPTS'] == 2


def test_env_wins_over_config_file(tmp_path, monkeypatch):
    path = tmp_path / 'judge.json'
    path.write_text(json.dumps({
        'ENGINE_TIMEOUT': 5,
        'ENGINE_RETRY_COUNT': 1,
    }))
    monkeypatch.delenv('ENGINE_TIMEOUT', raising=False)
    monkeypatch.setenv('ENGINE_RETRY_COUNT', '7')
    settings = config.get_judge_settings(path)
    assert settings['ENGINE_TIMEOUT'] == 5.0
    assert isinstance(settings['ENGINE_TIMEOUT'], float)
    assert settings['ENGINE_RETRY_COUNT'] == 7


def test_broken_config_file_is_ignored(tmp_path):
    path = tmp_path / 'judge.json'
    path.write_text('{not json')
    assert config.get_judge_settings(path)['MAX_WORKER_COUNT'] == 4


def test_language_id_overrides(monkeypatch):
    monkeypatch.setattr(config, 'JUDGE0_LANGUAGE_IDS', '{"python": 92}')
    ids = config.get_language_ids()
    assert ids[Language.PYTHON] == 92
    assert ids[Language.C] == 50
