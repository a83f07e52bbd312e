# ConfigChat.py
import json
import logging
import os
import re
import sqlite3
import threading
from typing import Any, Callable, Dict, List, Optional, Union

from watchdog.events import FileSystemEventHandler


# --- Global Cache and Lock for ConfigManager instances ---
_config_cache: Dict[tuple, "ConfigManager"] = {}
_cache_lock = threading.Lock()

logger = logging.getLogger("ConfigChat")
logger.setLevel(logging.DEBUG)

CONFIG_PATH_ENV = "CHAT_CONFIG_PATH"

ConfigDict = Dict[str, Any]


class ConfigManager:
    """
    Loads the chat service configuration from a JSON file.

    The file is a list of items, each with a "name", "value" and "type". Values
    may reference each other with $NAME or ${NAME}. Items of type 'dir_path' and
    'file_path' get their directories created on load.

    A missing file is written out from the internal defaults, and keys missing
    from an existing file are appended with their default values.
    """
    def __init__(self, paths: Union[str, List[str], None] = None):
        if paths is None or (isinstance(paths, list) and not paths):
            project_root = os.path.dirname(os.path.abspath(__file__))
            self.paths = [os.path.join(project_root, "config", "config.json")]
        elif isinstance(paths, str):
            self.paths = [os.path.abspath(paths)]
        else:
            self.paths = [os.path.abspath(p) for p in paths]

        self._config: ConfigDict = {}
        self._lock = threading.RLock()

        self.reload()

    def _get_default_values(self) -> List[Dict[str, Any]]:
        """Canonical default items, in the on-disk format."""
        return [
            {
                "name": "ROOT_DIR", "value": ".", "default": ".", "type": "root_path",
                "description": "Root for all relative paths. '.' is the parent of the directory holding this config file.",
                "category": "System & Paths"
            },
            {
                "name": "DATA_DIR", "value": "data", "default": "data", "type": "dir_path",
                "description": "Directory holding the database and uploaded media, relative to ROOT_DIR.",
                "category": "System & Paths"
            },
            {
                "name": "DB_FILE", "value": "$DATA_DIR/chat.db", "default": "$DATA_DIR/chat.db", "type": "file_path",
                "description": "Path to the SQLite database file.",
                "category": "System & Paths"
            },
            {
                "name": "UPLOADS_DIR", "value": "$DATA_DIR/uploads", "default": "$DATA_DIR/uploads", "type": "dir_path",
                "description": "Directory where media attached to messages is written.",
                "category": "Media"
            },
            {
                "name": "MEDIA_BASE_URL", "value": "/uploads", "default": "/uploads", "type": "str",
                "description": "URL prefix returned for uploaded media. The server mounts UPLOADS_DIR under /uploads.",
                "category": "Media"
            },
            {
                "name": "MAX_UPLOAD_SIZE_MB", "value": 25, "default": 25, "type": "int",
                "description": "Largest accepted media attachment, in megabytes.",
                "category": "Media"
            },
            {
                "name": "ALLOWED_IMAGE_TYPES",
                "value": "image/png,image/jpeg,image/gif,image/webp",
                "default": "image/png,image/jpeg,image/gif,image/webp",
                "type": "list_str",
                "description": "Comma-separated MIME types accepted for media messages.",
                "category": "Media"
            },
            {
                "name": "LANGUAGE_DETECTION_ENABLED", "value": 1, "default": 1, "type": "bool",
                "description": "If 1 (true), code blocks in rich-text messages are tagged with a detected language.",
                "category": "Features"
            },
            {
                "name": "MESSAGE_RATE_LIMIT_COUNT", "value": 30, "default": 30, "type": "int",
                "description": "How many messages a client may send within MESSAGE_RATE_LIMIT_SECONDS.",
                "category": "Security"
            },
            {
                "name": "MESSAGE_RATE_LIMIT_SECONDS", "value": 60, "default": 60, "type": "int",
                "description": "Window for MESSAGE_RATE_LIMIT_COUNT.",
                "category": "Security"
            },
            {
                "name": "ACCESS_TOKEN_EXPIRE_MINUTES", "value": 30, "default": 30, "type": "int",
                "description": "Lifetime of issued access tokens.",
                "category": "Security"
            },
            {
                "name": "JWT_ALGORITHM", "value": "HS256", "default": "HS256", "type": "str",
                "description": "Signing algorithm for access tokens.",
                "category": "Security"
            },
            {
                "name": "SERVER_HOST", "value": "0.0.0.0", "default": "0.0.0.0", "type": "str",
                "description": "Interface the HTTP server binds to.",
                "category": "Server"
            },
            {
                "name": "SERVER_PORT", "value": 8000, "default": 8000, "type": "int",
                "description": "Port the HTTP server listens on.",
                "category": "Server"
            },
        ]

    def _substitute_variables(self, value: Any, all_raw_values: Dict[str, Any], seen: Optional[set] = None) -> Any:
        """Expands $VAR and ${VAR} references, raising ValueError on cycles."""
        if seen is None:
            seen = set()

        if not isinstance(value, str):
            return value

        pattern = re.compile(r'\$(\w+)|\$\{(\w+)\}')

        def replacer(match):
            var_name = match.group(1) or match.group(2)
            if var_name in seen:
                raise ValueError(f"Circular reference detected in config for variable: {var_name}")
            if var_name not in all_raw_values:
                return match.group(0)
            return str(self._substitute_variables(all_raw_values[var_name], all_raw_values, seen | {var_name}))

        return pattern.sub(replacer, value)

    def _ensure_path_exists(self, path: str, is_directory: bool) -> None:
        target_dir = path if is_directory else os.path.dirname(path)
        if target_dir and not os.path.exists(target_dir):
            try:
                os.makedirs(target_dir, exist_ok=True)
                logger.info(f"Created missing configuration directory: {target_dir}")
            except OSError as e:
                logger.error(f"Failed to create directory {target_dir}: {e}")

    def _parse_value(self, item: Dict[str, Any], root_dir: str) -> Any:
        """Parses a raw item value according to its 'type'."""
        name = item.get('name', 'UNKNOWN')
        value = item.get('value')
        item_type = item.get('type')

        if value is None:
            raise ValueError(f"Configuration item '{name}' has no value.")

        if item_type == 'int':
            return int(value)
        if item_type == 'float':
            return float(value)
        if item_type == 'bool':
            return bool(int(value))
        if item_type == 'str':
            return str(value)

        if item_type == 'dir_path':
            full_path = os.path.join(root_dir, os.path.expanduser(str(value)))
            self._ensure_path_exists(full_path, is_directory=True)
            return full_path

        if item_type == 'file_path':
            full_path = os.path.join(root_dir, os.path.expanduser(str(value)))
            self._ensure_path_exists(full_path, is_directory=False)
            return full_path

        if item_type == 'list_str':
            value_str = value if isinstance(value, str) else ','.join(value)
            return [part.strip() for part in value_str.split(',') if part.strip()]

        if item_type == 'root_path':
            if value == '.':
                path = os.path.dirname(os.path.dirname(self.paths[0]))
            else:
                path = os.path.expanduser(str(value))
            self._ensure_path_exists(path, is_directory=True)
            return path

        logger.warning(f"Unknown config type '{item_type}' for '{name}'. Using value as is.")
        return value

    def _format_value_for_json(self, value: Any, item_type: str) -> Any:
        """Converts a parsed value back to its on-disk representation."""
        if item_type == 'bool':
            return 1 if value else 0
        if item_type == 'list_str' and isinstance(value, list):
            return ','.join(map(str, value))
        return value

    def _read_items(self) -> List[Dict[str, Any]]:
        primary_path = self.paths[0]
        defaults = self._get_default_values()

        if not os.path.exists(primary_path):
            logger.info(f"Configuration file not found. Creating a default one at: {primary_path}")
            try:
                os.makedirs(os.path.dirname(primary_path), exist_ok=True)
                with open(primary_path, "w") as f:
                    json.dump(defaults, f, indent=4)
            except IOError as e:
                logger.error(f"Could not create default config file at {primary_path}. Error: {e}")
            return defaults

        try:
            with open(primary_path, 'r') as f:
                user_items = json.load(f)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Error parsing {primary_path}: {e}. Using internal defaults.")
            return defaults

        known = {item['name'] for item in user_items}
        missing = [item for item in defaults if item['name'] not in known]
        if missing:
            for item in missing:
                logger.info(f"Configuration key '{item['name']}' is missing. Adding it with its default value.")
            user_items.extend(missing)
            try:
                with open(primary_path, 'w') as f:
                    json.dump(user_items, f, indent=4)
            except IOError as e:
                logger.error(f"Could not write updated config to {primary_path}: {e}")
        return user_items

    def _parse_items(self, items: List[Dict[str, Any]]) -> ConfigDict:
        raw_values = {item['name']: item['value'] for item in items}
        substituted = []
        for item in items:
            item = dict(item)
            if isinstance(item['value'], str):
                item['value'] = self._substitute_variables(item['value'], raw_values)
            substituted.append(item)

        parsed: ConfigDict = {}
        root_item = next((item for item in substituted if item['name'] == 'ROOT_DIR'), None)
        root_dir = self._parse_value(root_item, "") if root_item else os.path.dirname(self.paths[0])
        parsed["ROOT_DIR"] = root_dir
        for item in substituted:
            name = item.get('name')
            if not name or name == "ROOT_DIR":
                continue
            parsed[name] = self._parse_value(item, root_dir)
        return parsed

    def load(self) -> None:
        """Reads and parses the config file. On a parse error the previous values are kept."""
        items = self._read_items()
        try:
            self._config = self._parse_items(items)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Error processing configuration values: {e}. Keeping previous config.")

    def reload(self) -> None:
        with self._lock:
            logger.info("Loading/Reloading configuration...")
            self.load()
            db_file = self._config.get('DB_FILE')
            if db_file:
                try:
                    sqlite3.connect(db_file).close()
                except sqlite3.OperationalError as e:
                    logger.error(f"Could not open database at {db_file}. Error: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        with self._lock:
            return self._config[key]

    @property
    def data(self) -> ConfigDict:
        with self._lock:
            return self._config.copy()

    def update_config(self, updates: Dict[str, Any]) -> None:
        """
        Writes the given values into the config file and reloads it.
        Unknown keys are skipped with a warning.
        """
        primary_path = self.paths[0]
        with self._lock:
            logger.info(f"Attempting to update configuration with: {updates}")
            try:
                with open(primary_path, 'r') as f:
                    items = json.load(f)
            except (IOError, json.JSONDecodeError) as e:
                logger.error(f"Cannot update config: failed to read {primary_path}. Error: {e}")
                return

            by_name = {item['name']: item for item in items}
            for key, value in updates.items():
                if key not in by_name:
                    logger.warning(f"Config key '{key}' not found in config file. Skipping update for this key.")
                    continue
                by_name[key]['value'] = self._format_value_for_json(value, by_name[key]['type'])

            try:
                with open(primary_path, "w") as f:
                    f.write(json.dumps(items, indent=4))
            except (IOError, TypeError) as e:
                logger.error(f"Could not write updated config to {primary_path}. Error: {e}")
                return
            self.reload()


def get_config(paths: Union[str, List[str], None] = None) -> ConfigManager:
    if paths is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if env_path:
            path_list = [os.path.abspath(env_path)]
        else:
            script_dir = os.path.dirname(os.path.abspath(__file__))
            path_list = [os.path.join(script_dir, 'config', 'config.json')]
    elif isinstance(paths, str):
        path_list = [os.path.abspath(paths)]
    else:
        path_list = [os.path.abspath(p) for p in paths]

    cache_key = tuple(sorted(path_list))

    with _cache_lock:
        if cache_key not in _config_cache:
            logger.info(f"Creating new ConfigManager for: {list(cache_key)}")
            _config_cache[cache_key] = ConfigManager(path_list)
        return _config_cache[cache_key]


class ConfigChangeHandler(FileSystemEventHandler):
    """Watchdog handler that calls reload_callback when a watched config file is modified."""
    def __init__(self, file_paths: List[str], reload_callback: Callable[[], None]):
        self.watched_files = {os.path.abspath(p) for p in file_paths}
        self.reload_callback = reload_callback

    def on_modified(self, event):
        if not event.is_directory and os.path.abspath(event.src_path) in self.watched_files:
            logger.info(f"Configuration file '{os.path.basename(event.src_path)}' has been modified.")
            self.reload_callback()
