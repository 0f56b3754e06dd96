import copy
import os
from importlib import resources
from pathlib import Path
from typing import Iterator, Optional

import tomli as toml

from marshalplan import logging as marshalplan_logging

logger = marshalplan_logging.get_logger(__name__)

CONFIG_ENV_VAR = "MARSHALPLAN_CONFIG"
CONFIG_FILE_NAME = "marshalplan.toml"
REPORT_FORMATS = ("text", "json")


def _read_resource(*parts: str) -> str:
    resource = resources.files("marshalplan")
    for part in parts:
        resource = resource.joinpath(part)
    try:
        return resource.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise FileNotFoundError(f"Could not locate packaged resource {'/'.join(parts)}") from e


def _merge_configs(config: dict, default_config: dict) -> dict:
    """Overlay ``config`` on a copy of ``default_config``, table by table.

    Keys unknown to the defaults are kept. A table on one side and a scalar
    on the other is a TypeError.
    """
    merged = copy.deepcopy(default_config)
    for key, value in config.items():
        default_value = merged.get(key)
        if isinstance(value, dict) and isinstance(default_value, dict):
            merged[key] = _merge_configs(value, default_value)
        elif key in merged and (isinstance(value, dict) or isinstance(default_value, dict)):
            raise TypeError(f"Config key '{key}' must be a "
                            f"{'table' if isinstance(default_value, dict) else 'value'}, "
                            f"got {type(value).__name__}")
        else:
            merged[key] = value
    return merged


def _validate_config(config: dict) -> dict:
    report_format = config["report"]["format"]
    if report_format not in REPORT_FORMATS:
        raise ValueError(f"report.format must be one of {REPORT_FORMATS}, got {report_format!r}")
    max_workers = config["resolution"]["max_workers"]
    if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
        raise ValueError(f"resolution.max_workers must be a positive integer, got {max_workers!r}")
    return config


def load_default_config() -> dict:
    return toml.loads(_read_resource("_resources", "marshalplan.default.toml"))


def load_type_graph_schema_text() -> str:
    return _read_resource("type_model", "schema.json")


def _config_candidates(config_file: Optional[str]) -> Iterator[tuple[str, Path, bool]]:
    # (where it came from, path, whether a missing file is an error)
    if config_file:
        yield "argument", Path(config_file).expanduser(), True
        return
    env_value = os.environ.get(CONFIG_ENV_VAR)
    if env_value:
        yield CONFIG_ENV_VAR, Path(env_value).expanduser(), True
        return
    yield "working directory", Path.cwd() / CONFIG_FILE_NAME, False
    yield "checkout", Path(__file__).resolve().parent.parent / CONFIG_FILE_NAME, False


def try_load_config(config_file: Optional[str] = None) -> dict:
    """Load the user configuration merged over the packaged defaults.

    The first of these wins: ``config_file``, the ``MARSHALPLAN_CONFIG``
    environment variable, ``marshalplan.toml`` in the working directory,
    ``marshalplan.toml`` next to the package (a source checkout). An explicit
    file that does not exist is an error; the last two are optional.
    """
    default_config = load_default_config()
    for source, path, required in _config_candidates(config_file):
        if path.is_file():
            logger.debug("Loading config from %s (%s)", path, source)
            with open(path, "rb") as f:
                return _validate_config(_merge_configs(toml.load(f), default_config))
        if required:
            raise FileNotFoundError(f"Config file {path} from {source} does not exist")

    logger.debug("No user config found; using the packaged defaults")
    return default_config
