import copy
import os
import yaml

DEFAULT_CONFIG = {
    # Root of Plex's data directory ("Plex Media Server"), holding Media/localhost/...
    "data_path": "~/.local/share/plexmediaserver/Library/Application Support/Plex Media Server",
    # Parent of this project's own on-disk thumbnail cache and logs.
    "project_root": "~/.intro-editor",
    "database_path": None,  # defaults to <data_path>/Plug-in Support/Databases/com.plexapp.plugins.library.db
    "logging_level": "INFO",
    "thumbnails": {
        "precise": False,         # generate with ffmpeg instead of reading index-sd.bif
        "max_cache": 200,
        "ffmpeg_timeout": 10,     # seconds
        "scale_width": 240,
        "watch_index_files": False,
    },
}

PLEX_DATABASE_RELPATH = os.path.join("Plug-in Support", "Databases", "com.plexapp.plugins.library.db")


def _default_config_path() -> str:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return os.path.join(xdg_config_home, "intro-editor", "config.yaml")


def _deep_merge(base: dict, override: dict) -> dict:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ConfigManager:
    def __init__(self, config_path: str | None = None):
        self.config_path = config_path or _default_config_path()
        self.config = self.load_config()

    def load_config(self):
        try:
            with open(self.config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            self.save_config(DEFAULT_CONFIG)
            return copy.deepcopy(DEFAULT_CONFIG)
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed config at {self.config_path}") from exc
        if not isinstance(user_config, dict):
            raise ValueError(f"Config at {self.config_path} must be a mapping")
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), user_config)

    def save_config(self, config):
        os.makedirs(os.path.dirname(self.config_path), exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    def get(self, key, default=None):
        keys = key.split('.')
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default

    def set(self, key, value):
        keys = key.split('.')
        node = self.config
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value
        self.save_config(self.config)

    @property
    def logging_level(self):
        return self.get("logging_level", "INFO")

    @property
    def use_precise_thumbnails(self) -> bool:
        return bool(self.get("thumbnails.precise", False))

    @property
    def data_path(self) -> str:
        return os.path.expanduser(self.get("data_path"))

    @property
    def project_root(self) -> str:
        return os.path.expanduser(self.get("project_root"))

    @property
    def database_path(self) -> str:
        path = self.get("database_path")
        if path:
            return os.path.expanduser(path)
        return os.path.join(self.data_path, PLEX_DATABASE_RELPATH)
