import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

from . import __version__

CONFIG_ENVIRONMENT_VARIABLE = 'ATEXPORT_CONFIG'

# Settings key constants
SETTING_PDS = 'service.pds'
SETTING_USER_AGENT = 'service.user_agent'
SETTING_CONCURRENCY = 'download.concurrency'
SETTING_MAX_RETRIES = 'download.max_retries'
SETTING_TIMEOUT = 'download.timeout'
SETTING_BASE_DELAY = 'download.base_delay'
SETTING_MAX_DELAY = 'download.max_delay'
SETTING_PART_SIZE = 'export.part_size'
SETTING_OUTPUT_DIR = 'export.output_dir'
SETTING_PRETTIFY_JSON = 'export.prettify_json'
SETTING_ORGANIZE_BY_COLLECTION = 'export.organize_by_collection'
SETTING_LOG_PATH = 'logging.path'
SETTING_LOG_LEVEL = 'logging.level'

DEFAULT_PDS = 'https://bsky.social'


class ExportSettings:
    """Settings manager for export configuration.

    Provides a read-only key-value interface to access settings from a TOML file.
    This class is agnostic to the schema and usage of settings - it simply loads the TOML
    file and provides access to the raw data structure. Consumers of this class are
    responsible for interpreting and validating the settings according to their needs.

    Example:
        settings = ExportSettings.load(config_path)
        concurrency = settings.get(SETTING_CONCURRENCY, 3)
        pds = settings.get('service.pds', DEFAULT_PDS)
    """

    def __init__(self, settings_file: Path | None = None, values: dict | None = None):
        """Initialize settings from a TOML file or from a dictionary.

        If the file does not exist, an empty settings dictionary is used, and all get()
        calls will return their defaults.

        Args:
            settings_file: Path to the TOML file, or None for no file
            values: Settings dictionary used instead of reading a file
        """
        self._settings_file = settings_file
        self._settings = dict(values) if values is not None else {}

        if values is None and settings_file is not None and settings_file.exists():
            with open(settings_file, 'rb') as f:
                self._settings = tomllib.load(f)

    @classmethod
    def load(cls, path: str | os.PathLike | None = None) -> "ExportSettings":
        """Load settings from path, falling back to the ATEXPORT_CONFIG environment variable."""
        if path is None:
            path = os.environ.get(CONFIG_ENVIRONMENT_VARIABLE)
        return cls(Path(path) if path else None)

    @property
    def settings_file(self) -> Path | None:
        return self._settings_file

    def get(self, key: str, default=None):
        """Get a setting value by key with optional default.

        Supports both simple keys and dot notation for accessing nested keys
        (e.g., 'download.concurrency' accesses settings['download']['concurrency']).
        Returns the default value if the key path does not exist or if any intermediate
        value is not a dictionary.

        Examples:
            >>> settings.get(SETTING_CONCURRENCY, 3)
            3
            >>> settings.get('nonexistent.key', 'fallback')
            'fallback'
        """
        keys = key.split('.')
        value = self._settings

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value


@dataclass(frozen=True)
class DownloadOptions:
    """Knobs of the download manager."""
    concurrency: int = 3
    max_retries: int = 3
    timeout: float = 5.0
    base_delay: float = 1.0
    max_delay: float = 30.0
    user_agent: str = f'atexport/{__version__}'

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1: {self.concurrency}")
        if self.max_retries < 0:
            raise ValueError(f"Max retries cannot be negative: {self.max_retries}")

    @classmethod
    def from_settings(cls, settings: ExportSettings) -> "DownloadOptions":
        defaults = cls()
        return cls(
            concurrency=int(settings.get(SETTING_CONCURRENCY, defaults.concurrency)),
            max_retries=int(settings.get(SETTING_MAX_RETRIES, defaults.max_retries)),
            timeout=float(settings.get(SETTING_TIMEOUT, defaults.timeout)),
            base_delay=float(settings.get(SETTING_BASE_DELAY, defaults.base_delay)),
            max_delay=float(settings.get(SETTING_MAX_DELAY, defaults.max_delay)),
            user_agent=str(settings.get(SETTING_USER_AGENT, defaults.user_agent)),
        )


@dataclass(frozen=True)
class ExportOptions:
    """Knobs of the export controller and archive assembler."""
    part_size: int = 1000
    prettify_json: bool = True
    organize_by_collection: bool = True

    def __post_init__(self):
        if self.part_size < 1:
            raise ValueError(f"Part size must be at least 1: {self.part_size}")

    @classmethod
    def from_settings(cls, settings: ExportSettings) -> "ExportOptions":
        defaults = cls()
        return cls(
            part_size=int(settings.get(SETTING_PART_SIZE, defaults.part_size)),
            prettify_json=bool(settings.get(SETTING_PRETTIFY_JSON, defaults.prettify_json)),
            organize_by_collection=bool(
                settings.get(SETTING_ORGANIZE_BY_COLLECTION, defaults.organize_by_collection)),
        )
