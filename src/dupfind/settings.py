import os
import tomllib
from pathlib import Path
from typing import Any, Mapping, NamedTuple

from .errors import SettingsError
from .utils.hash_pool import CHUNK_SIZE, DEFAULT_ALGORITHM, DEFAULT_WORKERS, EXECUTORS, HASH_ALGORITHMS

# Environment variable overriding the pool size
WORKERS_ENVIRONMENT_VARIABLE = 'DUPFIND_WORKERS'

# Settings key constants
SETTING_FOLLOW_SYMLINKS = 'scan.follow_symlinks'
SETTING_INCLUDE_EMPTY = 'scan.include_empty'
SETTING_EXCLUDE = 'scan.exclude'
SETTING_ALGORITHM = 'hash.algorithm'
SETTING_CHUNK_SIZE = 'hash.chunk_size'
SETTING_TIMEOUT = 'hash.timeout'
SETTING_WORKERS = 'pool.workers'
SETTING_QUEUE_CAPACITY = 'pool.queue_capacity'
SETTING_EXECUTOR = 'pool.executor'
SETTING_LOG_PATH = 'logging.path'
SETTING_LOG_LEVEL = 'logging.level'

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class Settings:
    """Read-only key-value access to a TOML settings file.

    Keys use dot notation for nested tables, so 'pool.workers' reads
    settings['pool']['workers']. A missing file name yields empty settings.

    Example:
        settings = Settings(Path('dupfind.toml'))
        workers = settings.get(SETTING_WORKERS, 4)
    """

    def __init__(self, path: Path | None = None, data: dict | None = None):
        """Load settings from ``path``, or take them from ``data``.

        Raises:
            SettingsError: The file cannot be read or is not valid TOML
        """
        self._path = path
        self._settings = {} if data is None else data

        if path is not None:
            try:
                with open(path, 'rb') as f:
                    self._settings = tomllib.load(f)
            except OSError as e:
                raise SettingsError(f"cannot read settings file {path}: {e.strerror or e}") from e
            except tomllib.TOMLDecodeError as e:
                raise SettingsError(f"invalid settings file {path}: {e}") from e

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, key: str, default=None):
        """Get a setting by dotted key, or ``default`` if any part of the path is missing."""
        keys = key.split('.')
        value = self._settings

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value


class ScanConfig(NamedTuple):
    """Everything one scan needs to know, resolved from all configuration sources."""
    workers: int = DEFAULT_WORKERS
    queue_capacity: int | None = None
    algorithm: str = DEFAULT_ALGORITHM
    chunk_size: int = CHUNK_SIZE
    timeout: float | None = None
    executor: str = 'process'
    follow_symlinks: bool = False
    include_empty: bool = True
    excluded_paths: frozenset[Path] = frozenset()
    log_path: str | None = None
    log_level: str | None = None


def resolve_config(overrides: Mapping[str, Any] | None = None,
                   settings: Settings | None = None,
                   environ: Mapping[str, str] | None = None) -> ScanConfig:
    """Merge command line overrides, the environment and a settings file.

    Later sources only fill in what earlier ones left as None: ``overrides`` (keyed
    by ScanConfig field name) win over ``DUPFIND_WORKERS``, which wins over the
    settings file, which wins over the defaults.

    Raises:
        SettingsError: A value is of the wrong type or out of range
    """
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    settings = settings if settings is not None else Settings()
    environ = environ if environ is not None else os.environ

    def pick(field: str, key: str):
        if field in overrides:
            return overrides[field]
        return settings.get(key, ScanConfig._field_defaults[field])

    workers = overrides.get('workers')
    if workers is None and environ.get(WORKERS_ENVIRONMENT_VARIABLE):
        workers = _parse_int(environ[WORKERS_ENVIRONMENT_VARIABLE], WORKERS_ENVIRONMENT_VARIABLE)
    if workers is None:
        workers = settings.get(SETTING_WORKERS, DEFAULT_WORKERS)

    excluded = pick('excluded_paths', SETTING_EXCLUDE)
    if not isinstance(excluded, (list, tuple, set, frozenset)):
        raise SettingsError(f"{SETTING_EXCLUDE} must be a list of paths")

    config = ScanConfig(
        workers=_check_positive(workers, SETTING_WORKERS),
        queue_capacity=_check_optional_positive(pick('queue_capacity', SETTING_QUEUE_CAPACITY), SETTING_QUEUE_CAPACITY),
        algorithm=_check_choice(pick('algorithm', SETTING_ALGORITHM), HASH_ALGORITHMS, SETTING_ALGORITHM),
        chunk_size=_check_positive(pick('chunk_size', SETTING_CHUNK_SIZE), SETTING_CHUNK_SIZE),
        timeout=_check_timeout(pick('timeout', SETTING_TIMEOUT)),
        executor=_check_choice(pick('executor', SETTING_EXECUTOR), EXECUTORS, SETTING_EXECUTOR),
        follow_symlinks=_check_bool(pick('follow_symlinks', SETTING_FOLLOW_SYMLINKS), SETTING_FOLLOW_SYMLINKS),
        include_empty=_check_bool(pick('include_empty', SETTING_INCLUDE_EMPTY), SETTING_INCLUDE_EMPTY),
        excluded_paths=frozenset(Path(p) for p in excluded),
        log_path=pick('log_path', SETTING_LOG_PATH),
        log_level=_check_optional_log_level(pick('log_level', SETTING_LOG_LEVEL)),
    )
    return config


def _parse_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got {value!r}") from None


def _check_positive(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise SettingsError(f"{name} must be a positive integer, got {value!r}")
    return value


def _check_optional_positive(value, name: str) -> int | None:
    if value is None:
        return None
    return _check_positive(value, name)


def _check_timeout(value) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise SettingsError(f"{SETTING_TIMEOUT} must be a positive number of seconds, got {value!r}")
    return float(value)


def _check_choice(value, choices, name: str) -> str:
    if value not in choices:
        raise SettingsError(f"{name} must be one of {', '.join(sorted(choices))}, got {value!r}")
    return value


def _check_bool(value, name: str) -> bool:
    if not isinstance(value, bool):
        raise SettingsError(f"{name} must be true or false, got {value!r}")
    return value


def _check_optional_log_level(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or value.upper() not in LOG_LEVELS:
        raise SettingsError(f"{SETTING_LOG_LEVEL} must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
    return value.upper()
