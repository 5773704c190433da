import os
import copy
import logging
import yaml
from pathlib import Path
from dotenv import load_dotenv

from formrelay.errors import ConfigError

ROOT = Path(__file__).parent
USERDATA = Path(ROOT / "data")
CONFIGYAML = USERDATA / "config.yaml"

logger = logging.getLogger(__name__)

# app
APP_NAME = "FormRelay"
APP_VERSION = "0.3.0"

# google
SCOPES = [
    "https://www.googleapis.com/auth/forms.body",
    "https://www.googleapis.com/auth/forms.responses.readonly",
]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
VIEWER_URL = "https://docs.google.com/forms/d/{form_id}/viewform"
UNTITLED = "Untitled Form"

# server
SERVER_HOST = "0.0.0.0"
SERVER_PORT = 3002

DEFAULTS = {
    "server": {"host": SERVER_HOST, "port": SERVER_PORT},
    "google": {
        "client_id": "",
        "client_secret": "",
        "redirect_uri": f"http://localhost:{SERVER_PORT}/oauth2callback",
    },
    "credentials": {
        "store": "env",
        "env_var": "GOOGLE_TOKEN",
        "path": "token.json",
        "slot": "default",
    },
    "export": {"save_dir": None},
    "database": {"name": "", "user": "", "password": "", "host": "", "port": 5432},
    "logging": {"level": "INFO", "file": None},
}

# environment variable -> (section, key)
ENV_OVERRIDES = {
    "GOOGLE_CLIENT_ID": ("google", "client_id"),
    "GOOGLE_CLIENT_SECRET": ("google", "client_secret"),
    "GOOGLE_REDIRECT_URI": ("google", "redirect_uri"),
    "FORMRELAY_TOKEN_STORE": ("credentials", "store"),
    "FORMRELAY_EXPORT_DIR": ("export", "save_dir"),
    "FORMRELAY_LOG_LEVEL": ("logging", "level"),
}


def _merge(base: dict, extra: dict) -> dict:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(path=None, *, use_env: bool = True) -> dict:
    """Build the runtime config.

    Order: built-in defaults, then the YAML file (``path``, ``$FORMRELAY_CONFIG``
    or ``data/config.yaml``), then environment variables (a ``.env`` file in
    the working directory is loaded first).
    """
    config = copy.deepcopy(DEFAULTS)

    if path is None:
        path = os.environ.get("FORMRELAY_CONFIG") or CONFIGYAML
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("config file %s not found, using defaults", path)
        loaded = {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    _merge(config, loaded)

    if use_env:
        load_dotenv()
        for var, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(var)
            if value:
                config[section][key] = value

    try:
        config["server"]["port"] = int(config["server"]["port"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid server port: {config['server']['port']!r}") from e
    return config


def setup_logging(config: dict):
    level = str(config.get("logging", {}).get("level") or "INFO").upper()
    handlers = [logging.StreamHandler()]
    log_file = config.get("logging", {}).get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )
    # discovery cache chatter
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
