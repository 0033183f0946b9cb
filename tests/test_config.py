import os
from unittest.mock import patch

import pytest

from image2taxonomy.exception import ConfigurationError
from image2taxonomy.utils import load_config
from image2taxonomy.utils.load_config import find_project_root, load_settings

CONFIG = """
paths:
  llama_server: infra/llama/llama-server
  models_dir: infra/models
  grammar: docs/taxonomy.gbnf

engine:
  model: Qwen3VL-8B-Instruct-Q4_K_M.gguf
  port: 8080
  request_timeout: 600

acceleration:
  local:
    backend: metal
    gpu_layers: 99
  docker:
    backend: cpu
    gpu_layers: 0

database:
  url: postgresql://localhost/from_file

queue:
  url: redis://localhost:6379/0
  job_class: ProductAnalysisJob

taxonomy:
  vertical: Apparel & Accessories
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    return path


@pytest.fixture(autouse=True)
def clean_env():
    with patch.dict(os.environ, {}, clear=True), \
         patch.object(load_config, "load_dotenv"), \
         patch.object(load_config, "DOCKER_ROOT", "/nonexistent-app-root"):
        yield


def test_load_settings_local(config_file, tmp_path):
    settings = load_settings(mode="local", config_path=str(config_file))

    assert settings.mode == "local"
    assert settings.project_root == str(tmp_path)
    assert settings.database_url == "postgresql://localhost/from_file"
    assert settings.engine.acceleration == "metal"
    assert settings.engine.gpu_layers == 99
    assert settings.engine.model_path == os.path.join(str(tmp_path), "infra/models", "Qwen3VL-8B-Instruct-Q4_K_M.gguf")
    assert settings.engine.server_path == os.path.join(str(tmp_path), "infra/llama/llama-server")
    assert settings.engine.grammar_path == os.path.join(str(tmp_path), "docs/taxonomy.gbnf")
    assert settings.taxonomy.grammar_path == settings.engine.grammar_path
    assert settings.engine.request_timeout == 600
    assert settings.engine.base_url == "http://127.0.0.1:8080"
    assert settings.queue.name == "queue:default"


def test_load_settings_docker_profile(config_file):
    settings = load_settings(mode="docker", config_path=str(config_file))
    assert settings.engine.acceleration == "cpu"
    assert settings.engine.gpu_layers == 0


def test_env_overrides_file(config_file):
    with patch.dict(os.environ, {"DATABASE_URL": "postgresql://db/env", "REDIS_URL": "redis://cache:6379/1"}):
        settings = load_settings(mode="local", config_path=str(config_file))
    assert settings.database_url == "postgresql://db/env"
    assert settings.queue.url == "redis://cache:6379/1"


def test_unknown_mode(config_file):
    with pytest.raises(ConfigurationError):
        load_settings(mode="cloud", config_path=str(config_file))


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_settings(mode="local", config_path=str(tmp_path / "missing.yaml"))


def test_missing_model(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG.replace("  model: Qwen3VL-8B-Instruct-Q4_K_M.gguf\n", ""))
    with pytest.raises(ConfigurationError) as exc:
        load_settings(mode="local", config_path=str(path))
    assert "engine.model" in str(exc.value)


def test_missing_database_url(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG.replace("  url: postgresql://localhost/from_file\n", ""))
    with pytest.raises(ConfigurationError):
        load_settings(mode="local", config_path=str(path))


def test_invalid_value(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG.replace("port: 8080", "port: not-a-port"))
    with pytest.raises(ConfigurationError):
        load_settings(mode="local", config_path=str(path))


def test_unknown_engine_key(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG.replace("port: 8080", "port: 8080\n  server_path: /usr/bin/llama"))
    with pytest.raises(ConfigurationError):
        load_settings(mode="local", config_path=str(path))


def test_find_project_root_walks_up(config_file, tmp_path):
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_project_root(str(nested)) == str(tmp_path)


def test_find_project_root_not_found(tmp_path):
    with pytest.raises(ConfigurationError):
        find_project_root(str(tmp_path))
