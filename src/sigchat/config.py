"""
User configuration, stored as JSON at ~/.sigchat/config.json.

Set SIGCHAT_CONFIG to use another file.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from sigchat.attachments import DEFAULT_STORAGE_ROOT
from sigchat.errors import ConfigError

CONFIG_FILE = Path.home() / ".sigchat" / "config.json"
DEFAULT_DAEMON_COMMAND = ["signal-cli", "-u", "{user_number}", "daemon", "--json"]


class Config(BaseModel):
    user_number: Optional[str] = None
    user_name: str = "me"
    storage_root: str = str(DEFAULT_STORAGE_ROOT)
    daemon_command: list[str] = DEFAULT_DAEMON_COMMAND
    daemon_socket: Optional[str] = None
    hide_phone_numbers: bool = False
    contact_colors: dict[str, str] = {}
    contacts: dict[str, str] = {}
    log_file: Optional[str] = None
    log_level: str = "INFO"

    def require_user(self) -> str:
        if not self.user_number:
            raise ConfigError("No user_number configured. Run `sigchat config init` first.")
        return self.user_number

    def daemon_argv(self) -> list[str]:
        user = self.require_user()
        return [part.replace("{user_number}", user) for part in self.daemon_command]

    def socket_address(self) -> Optional[tuple[str, Optional[int]]]:
        """``(host, port)`` for a TCP socket, ``(path, None)`` for a unix socket."""
        if not self.daemon_socket:
            return None
        host, sep, port = self.daemon_socket.rpartition(":")
        if sep and host and port.isdigit():
            return host, int(port)
        return self.daemon_socket, None


def config_path() -> Path:
    override = os.environ.get("SIGCHAT_CONFIG")
    return Path(override).expanduser() if override else CONFIG_FILE


def _load_raw(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_config(path: Optional[Path] = None) -> Config:
    path = path or config_path()
    try:
        return Config.model_validate(_load_raw(path))
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {path}: {e.error_count()} field error(s)", details={"errors": e.errors()})


def save_config(cfg: Config, path: Optional[Path] = None) -> Path:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg.model_dump(exclude_defaults=True), indent=2))
    return path
