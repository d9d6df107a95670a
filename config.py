"""Configuration loader for Preview Bridge."""

import os
from pathlib import Path
from typing import Any

import yaml

BASE_DIR = Path(__file__).parent
CONFIG_ENV_VAR = "PREVIEW_BRIDGE_CONFIG"

CONSOLE_LEGACY = "legacy"
CONSOLE_ERUDA = "eruda"


class Config:
    """Server configuration from config.yaml."""

    def __init__(self, config_path: str | Path | None = None):
        explicit = config_path is not None or bool(os.environ.get(CONFIG_ENV_VAR))
        if config_path is None:
            config_path = os.environ.get(CONFIG_ENV_VAR) or BASE_DIR / "config.yaml"

        self._config = self._load_config(config_path, required=explicit)

    def _load_config(self, path: Path | str, required: bool = True) -> dict[str, Any]:
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            if required:
                raise FileNotFoundError(f"Config file not found: {path}")
            return {}

        with open(path, "r") as f:
            return yaml.safe_load(f) or {}

    def _server(self) -> dict[str, Any]:
        return self._config.get("server") or {}

    def _preview(self) -> dict[str, Any]:
        return self._config.get("preview") or {}

    def _int(self, section: dict[str, Any], key: str, default: int, minimum: int = 0) -> int:
        raw_value = section.get(key, default)
        try:
            value = int(raw_value)
        except (TypeError, ValueError):
            value = default
        return max(value, minimum)

    def _dir(self, key: str, default: Path) -> Path:
        raw_value = self._preview().get(key)
        if not raw_value:
            return default
        return Path(os.path.expanduser(str(raw_value)))

    # Control API

    @property
    def host(self) -> str:
        return self._server().get("host", "127.0.0.1")

    @property
    def port(self) -> int:
        return self._int(self._server(), "port", 8157, minimum=1)

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins. Defaults to ["*"] for the local webview host."""
        return self._server().get("cors_origins", ["*"])

    @property
    def debug(self) -> bool:
        """Get debug mode. Defaults to False."""
        return bool(self._server().get("debug", False))

    @property
    def log_level(self) -> str:
        """Get log level. Defaults to 'info'."""
        return str(self._server().get("log_level", "info")).lower()

    # Preview server

    @property
    def preview_host(self) -> str:
        """Host name used in preview URLs handed to the browser."""
        return self._preview().get("host", "localhost")

    @property
    def bind_host(self) -> str:
        """Interface the preview server binds to. Loopback only by default."""
        return self._preview().get("bind_host", "127.0.0.1")

    @property
    def server_port(self) -> int:
        return self._int(self._preview(), "server_port", 8158, minimum=1)

    @property
    def preview_port(self) -> int:
        """Port the preview is opened on.

        When it differs from server_port, a run only opens the browser against
        an externally managed server on this port.
        """
        return self._int(self._preview(), "preview_port", self.server_port, minimum=1)

    @property
    def console_port(self) -> int:
        return self._int(self._preview(), "console_port", 8159, minimum=1)

    @property
    def preview_mode(self) -> str:
        """Where previews open: 'inapp' or 'browser'."""
        mode = str(self._preview().get("mode", "inapp")).lower()
        return mode if mode in ("inapp", "browser") else "inapp"

    @property
    def console(self) -> str:
        """Console flavour injected into previews: 'eruda' or 'legacy'."""
        value = str(self._preview().get("console", CONSOLE_ERUDA)).lower()
        return value if value in (CONSOLE_ERUDA, CONSOLE_LEGACY) else CONSOLE_ERUDA

    @property
    def show_console_toggler(self) -> bool:
        return bool(self._preview().get("show_console_toggler", True))

    @property
    def markdown_style(self) -> str | None:
        """Optional custom stylesheet for rendered markdown."""
        return self._preview().get("markdown_style") or None

    @property
    def default_file_encoding(self) -> str:
        return self._preview().get("default_file_encoding", "utf-8")

    @property
    def max_port_retries(self) -> int:
        """How many successive ports are tried when binding fails."""
        return self._int(self._preview(), "max_port_retries", 20)

    @property
    def cache_dir(self) -> Path:
        return self._dir("cache_dir", Path.home() / ".cache" / "preview-bridge")

    @property
    def data_dir(self) -> Path:
        return self._dir("data_dir", Path.home() / ".local" / "share" / "preview-bridge")

    @property
    def assets_dir(self) -> Path:
        return self._dir("assets_dir", BASE_DIR / "assets")


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config | None) -> None:
    """Replace the global config instance (None resets to lazy loading)."""
    global _config
    _config = config
