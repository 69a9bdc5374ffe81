"""Configuration loading and validation.

Settings come from an optional ``config.yaml`` and are overridden by
environment variables. The result is one immutable :class:`Settings` value
built at startup and passed explicitly to every component.

Example config.yaml::

    mail_domain: example.com
    imap:
      host: imap.example.com
      port: 993
      tls: true
      folder: INBOX
      username: catchall@example.com
    pool:
      size: 5
      timeout: 10
    log:
      file: history.log
      size: 15
    inbox_size: 15
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from inboxview.errors import ConfigurationError
from inboxview.keychain import KeychainStorage
from inboxview.yaml_util import load_yaml, save_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "config.yaml"
DATETIME_FORMAT = "%e %b %Y at %H:%M %Z"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

# name -> (environment variable, path in config.yaml, default, type, bounds)
SETTING_SOURCES = {
    "mail_domain": ("MAIL_DOMAIN", ("mail_domain",), "example.com", str, None),
    "host": ("MAIL_SERVER", ("imap", "host"), "localhost", str, None),
    "port": ("MAIL_PORT", ("imap", "port"), 993, int, (1, 65535)),
    "use_tls": ("MAIL_TLS", ("imap", "tls"), True, bool, None),
    "folder": ("MAIL_FOLDER", ("imap", "folder"), "INBOX", str, None),
    "username": ("MAIL_USERNAME", ("imap", "username"), None, str, None),
    "password": ("MAIL_PASSWORD", ("imap", "password"), None, str, None),
    "socket_timeout": ("SOCKET_TIMEOUT", ("imap", "socket_timeout"), 15.0, float, (1, 300)),
    "pool_size": ("POOL_SIZE", ("pool", "size"), 5, int, (1, 50)),
    "pool_timeout": ("POOL_TIMEOUT", ("pool", "timeout"), 10.0, float, (0.1, 300)),
    "log_file": ("LOG_FILE", ("log", "file"), "history.log", str, None),
    "log_size": ("LOG_SIZE", ("log", "size"), 15, int, (1, 1000)),
    "inbox_size": ("INBOX_SIZE", ("inbox_size",), 15, int, (1, 200)),
}


@dataclass(frozen=True)
class Credentials:
    """Login for the shared mailbox. The secret is kept out of repr()."""

    username: str
    secret: str = field(repr=False)


@dataclass(frozen=True)
class ConnectionConfig:
    """Where the shared mailbox lives."""

    host: str
    port: int = 993
    use_tls: bool = True
    folder: str = "INBOX"
    socket_timeout: float = 15.0


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read-only after startup."""

    mail_domain: str
    connection: ConnectionConfig
    credentials: Credentials
    log_file: Path = Path("history.log")
    log_size: int = 15
    inbox_size: int = 15
    pool_size: int = 5
    pool_timeout: float = 10.0
    datetime_format: str = DATETIME_FORMAT


def load_config(config_path: Optional[Path] = None, script_dir: Path = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Search order:
    1. Explicit --config path
    2. ./config.yaml (current working directory)
    3. Script directory config.yaml

    Args:
        config_path: Explicit path to config file
        script_dir: Script directory for fallback search

    Returns:
        Configuration dictionary (empty if no config found)
    """
    search_paths = []

    if config_path:
        search_paths.append(Path(config_path))
    else:
        search_paths.append(Path.cwd() / DEFAULT_CONFIG_FILENAME)
        if script_dir:
            search_paths.append(script_dir / DEFAULT_CONFIG_FILENAME)

    for path in search_paths:
        if path.exists():
            try:
                config = load_yaml(path)
            except Exception as e:
                raise ConfigurationError(f"Could not read config file {path}: {e}") from e
            logger.info("Loaded config from: %s", path)
            return config

    return {}


def _lookup(config: Mapping[str, Any], path) -> Any:
    node: Any = config
    for key in path:
        if not isinstance(node, Mapping) or key not in node:
            return None
        node = node[key]
    return node


def _coerce(name: str, value: Any, kind: type, bounds) -> Any:
    """Convert a raw setting to its type and check its bounds."""
    if kind is str:
        return str(value).strip()

    if kind is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigurationError(f"Setting '{name}' must be a boolean, got {value!r}")

    if isinstance(value, bool):
        raise ConfigurationError(f"Setting '{name}' must be a number, got {value!r}")
    try:
        number = kind(str(value).strip()) if isinstance(value, str) else kind(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Setting '{name}' must be a number, got {value!r}") from None

    if bounds:
        low, high = bounds
        if not low <= number <= high:
            raise ConfigurationError(
                f"Setting '{name}' must be between {low} and {high}, got {number}"
            )
    return number


def resolve_setting(
    name: str,
    config: Mapping[str, Any],
    environ: Mapping[str, str],
) -> Any:
    """Resolve one setting: environment first, then config file, then default.

    Raises:
        ConfigurationError: If the value has the wrong type or is out of bounds
    """
    env_var, path, default, kind, bounds = SETTING_SOURCES[name]
    raw = environ.get(env_var)
    if raw is None or raw == "":
        raw = _lookup(config, path)
    if raw is None or raw == "":
        return default
    return _coerce(name, raw, kind, bounds)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """Validate configuration and return list of errors.

    Only the config file is checked; environment overrides are not consulted.

    Args:
        config: Configuration dictionary

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    for name in SETTING_SOURCES:
        try:
            resolve_setting(name, config, {})
        except ConfigurationError as e:
            errors.append(str(e))

    if not _lookup(config, ("imap", "username")):
        errors.append("Missing 'imap.username'")
    return errors


def load_settings(
    config: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    keychain: Optional[KeychainStorage] = None,
) -> Settings:
    """Build the process-wide settings.

    Args:
        config: Parsed config file (see load_config); empty if None
        environ: Environment mapping (default: os.environ)
        keychain: Keychain used when no password is configured

    Returns:
        Settings instance

    Raises:
        ConfigurationError: Missing credentials or invalid values
    """
    config = config or {}
    environ = os.environ if environ is None else environ
    values = {name: resolve_setting(name, config, environ) for name in SETTING_SOURCES}

    username = values["username"]
    if not username:
        raise ConfigurationError(
            "No mailbox username configured. Set MAIL_USERNAME or 'imap.username'."
        )

    password = values["password"]
    if not password:
        keychain = keychain or KeychainStorage()
        password = keychain.load_imap_password(username)
    if not password:
        raise ConfigurationError(
            f"No password found for {username}. "
            "Set MAIL_PASSWORD or run 'inboxview setup'."
        )

    return Settings(
        mail_domain=values["mail_domain"],
        connection=ConnectionConfig(
            host=values["host"],
            port=values["port"],
            use_tls=values["use_tls"],
            folder=values["folder"],
            socket_timeout=values["socket_timeout"],
        ),
        credentials=Credentials(username=username, secret=password),
        log_file=Path(values["log_file"]),
        log_size=values["log_size"],
        inbox_size=values["inbox_size"],
        pool_size=values["pool_size"],
        pool_timeout=values["pool_timeout"],
    )


def save_connection(
    config_path: Path,
    host: str,
    port: int,
    username: str,
    use_tls: bool = True,
    mail_domain: Optional[str] = None,
) -> None:
    """Write the IMAP connection block into config.yaml.

    Existing keys and comments are preserved. The password is never
    written; it belongs in the keychain.
    """
    config_path = Path(config_path)
    data = load_yaml(config_path) if config_path.exists() else {}

    imap = data.get("imap")
    if not isinstance(imap, dict):
        imap = {}
        data["imap"] = imap
    imap["host"] = host
    imap["port"] = port
    imap["tls"] = use_tls
    imap["username"] = username
    imap.pop("password", None)
    if mail_domain:
        data["mail_domain"] = mail_domain

    save_yaml(data, config_path)
