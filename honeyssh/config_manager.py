# config_manager.py
import os
import yaml
from dotenv import load_dotenv, find_dotenv

from .logger import log

# Load environment variables from .env file (searching parent directories)
load_dotenv(find_dotenv(usecwd=True))

DEFAULT_CONFIG = {
    "server": {
        "host_key_file": "server_keys/id_ed25519",
        "client_keys_dir": "client_keys",
        "dump_dir": "dump",
        "banner": "SSH-2.0-OpenSSH_7.4p1 Debian-10+deb9u7",
        "connection_timeout": 600,
        "accept_timeout": 20
    },
    "logging": {
        "level": "INFO"
    }
}

# Environment variable -> config key path
ENV_OVERRIDES = {
    "HONEYSSH_HOST_KEY": ("server", "host_key_file"),
    "HONEYSSH_CLIENT_KEYS": ("server", "client_keys_dir"),
    "HONEYSSH_DUMP_DIR": ("server", "dump_dir"),
    "HONEYSSH_LOG_LEVEL": ("logging", "level"),
}

def _copy_defaults(defaults):
    return {k: (_copy_defaults(v) if isinstance(v, dict) else v) for k, v in defaults.items()}

class ConfigManager:
    def __init__(self, config_path=None):
        self.config_path = config_path or os.getenv("HONEYSSH_CONFIG", "config.yaml")
        self._config = _copy_defaults(DEFAULT_CONFIG)
        self.load()

    def load(self):
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r') as f:
                    user_config = yaml.safe_load(f)
                    if user_config:
                        self._merge(self._config, user_config)
                log.info(f"[*] Loaded configuration from {self.config_path}")
            except (OSError, yaml.YAMLError) as e:
                log.error(f"[!] Error loading config {self.config_path}: {e}")
        else:
            log.debug(f"[*] No {self.config_path} found, using defaults.")

        # Environment Override (Priority over config.yaml)
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                self._config[section][key] = value

        for key in ("connection_timeout", "accept_timeout"):
            raw = os.getenv(f"HONEYSSH_{key.upper()}")
            if raw:
                try: self._config['server'][key] = float(raw)
                except ValueError: log.warning(f"[!] Ignoring non-numeric HONEYSSH_{key.upper()}={raw!r}")

    def _merge(self, defaults, overrides):
        for k, v in overrides.items():
            if isinstance(v, dict) and isinstance(defaults.get(k), dict):
                self._merge(defaults[k], v)
            else:
                defaults[k] = v

    def get(self, *keys):
        val = self._config
        for k in keys:
            val = val.get(k)
            if val is None: return None
        return val

# Global instance
config = ConfigManager()
