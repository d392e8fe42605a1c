"""Configuration management for Stockroom.

Reads configuration from ~/.config/stockroom.toml and creates default config if needed.
"""

from pathlib import Path
from dataclasses import dataclass
import tomllib
import tomli_w


@dataclass
class Config:
    """Application configuration."""

    base_dir: Path
    db_data_dir: Path
    db_filename: str
    log_level: str
    log_dir: Path
    max_depth: int = 10
    path_separator: str = "/"
    search_fuzzy_threshold: float = 0.6
    search_max_results: int = 50
    search_min_length: int = 2
    search_debounce_ms: int = 300

    @property
    def db_path(self) -> Path:
        """Get the full database path (data_dir/filename)."""
        return self.db_data_dir / self.db_filename

    def search_config(self):
        """Build the search configuration shared by server and client search."""
        # Lazy import to avoid circular dependencies
        from hierarchy.search import SearchConfig

        return SearchConfig(
            fuzzy_threshold=self.search_fuzzy_threshold,
            max_results=self.search_max_results,
            min_search_length=self.search_min_length,
            debounce_ms=self.search_debounce_ms,
        )

    @classmethod
    def default(cls) -> "Config":
        """Create a Config with default values."""
        home = Path.home()
        base_dir = home / "data" / "stockroom"
        return cls(
            base_dir=base_dir,
            db_data_dir=base_dir / "db",
            db_filename="stockroom.db",
            log_level="INFO",
            log_dir=base_dir / "logs",
        )


def get_config_path() -> Path:
    """Get the path to the config file."""
    return Path.home() / ".config" / "stockroom.toml"


def get_migrations_dir() -> Path:
    """Get the path to the migrations directory.

    This is always relative to the code location, not configurable.
    """
    return Path(__file__).parent / "db" / "migrations"


def get_seed_file() -> Path:
    """Get the path to the bundled category seed file."""
    return Path(__file__).parent / "db" / "seed" / "categories.yaml"


def load_config(config_path: Path = None) -> Config:
    """Load configuration from file, creating default if it doesn't exist.

    Args:
        config_path: Optional override of the config file location.

    Returns:
        Config object with loaded or default values.
    """
    config_path = config_path or get_config_path()

    # If config doesn't exist, create it with defaults
    if not config_path.exists():
        config = Config.default()
        _write_config(config, config_path)
        return config

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    return _parse_config(data)


def _parse_config(data: dict) -> Config:
    """Build a Config from parsed TOML, filling in defaults for missing values."""
    defaults = Config.default()
    base_dir = Path(data.get("base_dir", defaults.base_dir))

    db_config = data.get("database", {})
    db_data_dir = Path(db_config.get("data_dir", base_dir / "db"))
    db_filename = db_config.get("filename", defaults.db_filename)

    log_config = data.get("logging", {})
    log_level = log_config.get("level", defaults.log_level)
    log_dir = Path(log_config.get("log_dir", base_dir / "logs"))

    hierarchy_config = data.get("hierarchy", {})
    max_depth = int(hierarchy_config.get("max_depth", defaults.max_depth))
    path_separator = hierarchy_config.get("path_separator", defaults.path_separator)

    if max_depth < 0:
        raise ValueError(f"hierarchy.max_depth must be non-negative, got {max_depth}")
    if not path_separator:
        raise ValueError("hierarchy.path_separator cannot be empty")

    search = data.get("search", {})

    return Config(
        base_dir=base_dir,
        db_data_dir=db_data_dir,
        db_filename=db_filename,
        log_level=log_level,
        log_dir=log_dir,
        max_depth=max_depth,
        path_separator=path_separator,
        search_fuzzy_threshold=float(
            search.get("fuzzy_threshold", defaults.search_fuzzy_threshold)
        ),
        search_max_results=int(search.get("max_results", defaults.search_max_results)),
        search_min_length=int(
            search.get("min_search_length", defaults.search_min_length)
        ),
        search_debounce_ms=int(search.get("debounce_ms", defaults.search_debounce_ms)),
    )


def _write_config(config: Config, config_path: Path = None) -> None:
    """Write config to the config file.

    Args:
        config: Config object to write.
        config_path: Optional override of the config file location.
    """
    config_path = config_path or get_config_path()

    # Ensure config directory exists
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "base_dir": str(config.base_dir),
        "database": {
            "data_dir": str(config.db_data_dir),
            "filename": config.db_filename,
        },
        "logging": {
            "level": config.log_level,
            "log_dir": str(config.log_dir),
        },
        "hierarchy": {
            "max_depth": config.max_depth,
            "path_separator": config.path_separator,
        },
        "search": {
            "fuzzy_threshold": config.search_fuzzy_threshold,
            "max_results": config.search_max_results,
            "min_search_length": config.search_min_length,
            "debounce_ms": config.search_debounce_ms,
        },
    }

    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)
