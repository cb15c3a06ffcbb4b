import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _in_container():
    return os.path.exists("/.dockerenv") or os.path.isdir("/data")


def _default_data_root():
    if _in_container():
        return Path("/data")
    return PROJECT_ROOT / "data"


def _default_log_root(data_root):
    if _in_container():
        return Path("/logs")
    return data_root / "logs"


@dataclass(frozen=True)
class EnginePaths:
    data_dir: str
    cache_dir: str
    public_dir: str
    log_dir: str
    temp_dir: str


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def resolve_within(base_dir, name):
    """Join ``name`` onto ``base_dir``; ``None`` if the result escapes the base."""
    if not name or os.path.isabs(name):
        return None
    candidate = os.path.abspath(os.path.join(base_dir, name))
    root = os.path.realpath(base_dir)
    if os.path.commonpath([os.path.realpath(candidate), root]) != root:
        return None
    return candidate


def _env_dir(name, default):
    return Path(os.environ.get(name) or default).resolve()


def build_engine_paths():
    # Read at call time so tests and deployments can redirect every directory.
    data_dir = _env_dir("YTBSHOW_DATA_DIR", _default_data_root())
    paths = EnginePaths(
        data_dir=str(data_dir),
        cache_dir=str(_env_dir("YTBSHOW_CACHE_DIR", data_dir / "cache")),
        public_dir=str(_env_dir("YTBSHOW_PUBLIC_DIR", data_dir / "public" / "temp")),
        log_dir=str(_env_dir("YTBSHOW_LOG_DIR", _default_log_root(data_dir))),
        temp_dir=str(_env_dir("YTBSHOW_TEMP_DIR", data_dir / "tmp")),
    )
    for directory in (paths.cache_dir, paths.public_dir, paths.log_dir, paths.temp_dir):
        ensure_dir(directory)
    return paths
