import os
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from image2taxonomy.exception import ConfigurationError
from image2taxonomy.logger import get_logger
from image2taxonomy.models import (
    AccelerationProfile,
    EngineSettings,
    QueueSettings,
    Settings,
    TaxonomySettings,
)

logger = get_logger(__name__)

CONFIG_FILE_NAME = "config.yaml"
DOCKER_ROOT = "/app"
MODES = ("local", "docker")


def load_config_file(file_path=CONFIG_FILE_NAME):
    """
    Loads the configuration from the specified YAML file.

    Args:
        file_path (str): Path to the YAML configuration file.

    Returns:
        dict: Parsed configuration as a dictionary.
    """
    with open(file_path, "r") as file:
        return yaml.safe_load(file) or {}


def find_project_root(start_dir: Optional[str] = None) -> str:
    """
    Locate the directory holding config.yaml.

    Inside the container the config is mounted at /app; otherwise walk up
    from start_dir (default: cwd).
    """
    if os.path.isfile(os.path.join(DOCKER_ROOT, CONFIG_FILE_NAME)):
        return DOCKER_ROOT

    d = os.path.abspath(start_dir or os.getcwd())
    while True:
        if os.path.isfile(os.path.join(d, CONFIG_FILE_NAME)):
            return d
        parent = os.path.dirname(d)
        if parent == d:
            raise ConfigurationError(f"{CONFIG_FILE_NAME} not found above {start_dir or os.getcwd()}")
        d = parent


def is_running_in_docker() -> bool:
    if os.path.exists("/.dockerenv"):
        return True
    if os.getenv("APP_ENV") == "production":
        return True
    return os.getcwd().startswith(DOCKER_ROOT)


def _resolve(root: str, path: str) -> str:
    path = os.path.expanduser(os.path.expandvars(path))
    return path if os.path.isabs(path) else os.path.join(root, path)


def load_settings(mode: Optional[str] = None, config_path: Optional[str] = None) -> Settings:
    """
    Read config.yaml (+ .env / environment) into validated Settings.

    mode selects the acceleration profile: "local" or "docker". When None it
    is auto-detected. DATABASE_URL and REDIS_URL override the file.
    """
    load_dotenv()

    try:
        if config_path:
            config_path = os.path.abspath(config_path)
            project_root = os.path.dirname(config_path)
        else:
            project_root = find_project_root()
            config_path = os.path.join(project_root, CONFIG_FILE_NAME)

        config = load_config_file(config_path)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"failed to load config: {e}")

    if mode is None:
        mode = "docker" if is_running_in_docker() else "local"
        logger.info(f"Auto-detected {mode} environment")
    elif mode not in MODES:
        raise ConfigurationError(f"Unknown mode '{mode}', expected one of {MODES}")

    try:
        paths = config.get("paths", {}) or {}
        engine_cfg = dict(config.get("engine", {}) or {})
        profile = AccelerationProfile(**((config.get("acceleration", {}) or {}).get(mode) or {}))
        logger.info(f"Using {mode} settings: acceleration={profile.backend}, gpu_layers={profile.gpu_layers}")

        model_name = engine_cfg.pop("model", None)
        if not model_name:
            raise ConfigurationError("engine.model is not set in config")

        grammar_path = _resolve(project_root, paths.get("grammar", "docs/taxonomy.gbnf"))

        engine = EngineSettings(
            server_path=_resolve(project_root, paths.get("llama_server", "infra/llama/llama-server")),
            model_path=os.path.join(_resolve(project_root, paths.get("models_dir", "infra/models")), model_name),
            grammar_path=grammar_path,
            acceleration=profile.backend,
            gpu_layers=profile.gpu_layers,
            **engine_cfg,
        )

        queue_cfg = dict(config.get("queue", {}) or {})
        if os.getenv("REDIS_URL"):
            queue_cfg["url"] = os.getenv("REDIS_URL")

        database_url = os.getenv("DATABASE_URL") or (config.get("database", {}) or {}).get("url")
        if not database_url:
            raise ConfigurationError("Database connection string (DATABASE_URL) not found.")

        taxonomy_cfg = dict(config.get("taxonomy", {}) or {})
        taxonomy_cfg["grammar_path"] = grammar_path

        return Settings(
            project_root=project_root,
            mode=mode,
            database_url=database_url,
            engine=engine,
            queue=QueueSettings(**queue_cfg),
            taxonomy=TaxonomySettings(**taxonomy_cfg),
        )
    except (ValidationError, TypeError) as e:
        raise ConfigurationError(f"invalid config in {config_path}: {e}")
