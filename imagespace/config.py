import json
import os

from .errors import ValidationError

DEFAULTS = {
    "DATABASE_URL": "sqlite:///./imagespace.db",
    "OSS_ENDPOINT": "",
    "OSS_BUCKET": "",
    "OSS_ACCESS_KEY_ID": "",
    "OSS_ACCESS_KEY_SECRET": "",
    "OSS_IMAGE_PREFIX": "image",
    "OSS_PUBLIC_BASE_URL": "",
    "GEMINI_API_KEY": "",
    "GEMINI_MODEL_NAME": "gemini-3-pro-image-preview",
    "DEFAULT_WORKSPACE": "default",
    "LOG_LEVEL": "INFO",
    "LOG_DIR": "",
    "MAX_CONTENT_LENGTH": 20 * 1024 * 1024,  # 20 MB upload limit
}

# JSON file section -> {file key: config key}
FILE_SECTIONS = {
    "oss": {
        "endpoint": "OSS_ENDPOINT",
        "bucket": "OSS_BUCKET",
        "access_key_id": "OSS_ACCESS_KEY_ID",
        "access_key_secret": "OSS_ACCESS_KEY_SECRET",
        "image_prefix": "OSS_IMAGE_PREFIX",
        "public_base_url": "OSS_PUBLIC_BASE_URL",
    },
    "database": {"url": "DATABASE_URL"},
    "gemini": {"api_key": "GEMINI_API_KEY", "model": "GEMINI_MODEL_NAME"},
}


def load_config_file(path):
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"cannot read config file {path}: {e}") from e

    values = {}
    for section, keys in FILE_SECTIONS.items():
        for file_key, config_key in keys.items():
            value = (raw.get(section) or {}).get(file_key)
            if value not in (None, ""):
                values[config_key] = value
    return values


def load_config(overrides=None):
    """Defaults, then the JSON file named by CONFIG_PATH, then env vars, then overrides."""
    config = dict(DEFAULTS)
    config.update(load_config_file(os.getenv("CONFIG_PATH", "configs/config.json")))

    for key in DEFAULTS:
        value = os.getenv(key)
        if value:
            config[key] = int(value) if key == "MAX_CONTENT_LENGTH" else value

    if overrides:
        config.update(overrides)
    return config
