from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv


# env var -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "DISCORD_TOKEN": "bot_token",
    "STORE_NAME": "store_name",
    "PUBLIC_BASE_URL": "public_base_url",
    "PORT": "http_port",
    "GUILD_ID": "guild_id",
    "SUPPORT_ROLE_ID": "support_role_id",
    "OWNER_ID": "owner_id",
    "TICKET_CATEGORY_ID": "ticket_category_id",
    "LOG_CHANNEL_ID": "log_channel_id",
    "PANEL_CHANNEL_ID": "panel_channel_id",
    "STRIPE_SECRET_KEY": "stripe.secret_key",
    "STRIPE_WEBHOOK_SECRET": "stripe.webhook_secret",
    "CRYPTOMUS_MERCHANT": "cryptomus.merchant_id",
    "CRYPTOMUS_API_KEY": "cryptomus.api_key",
    "CRYPTOMUS_WEBHOOK_SECRET": "cryptomus.webhook_secret",
}


class ConfigError(Exception):
    """Raised when the store configuration cannot be loaded."""


def _deep_merge_dict(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge overlay into base (in place) and return base.

    - Dict values are merged recursively
    - Other types overwrite
    """
    for k, v in overlay.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge_dict(base[k], v)  # type: ignore[index]
        else:
            base[k] = v
    return base


def load_json(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _set_dotted(config: Dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    node = config
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay non-empty environment variables onto the merged config (in place)."""
    env = os.environ if environ is None else environ
    for env_name, dotted_key in ENV_OVERRIDES.items():
        raw = env.get(env_name)
        if raw is None or not str(raw).strip():
            continue
        _set_dotted(config, dotted_key, str(raw).strip())
    return config


def load_config_with_secrets(
    base_dir: Path,
    config_name: str = "config.json",
    secrets_name: str = "config.secrets.json",
    *,
    use_env: bool = True,
) -> Tuple[Dict[str, Any], Path, Path]:
    """Load config.json, merge config.secrets.json on top, then environment overrides.

    A `.env` file next to config.json is loaded first (existing env vars win).

    Returns: (merged_config, config_path, secrets_path)
    """
    config_path = base_dir / config_name
    secrets_path = base_dir / secrets_name

    if not config_path.exists():
        raise ConfigError(f"Missing config file: {config_path}")

    try:
        config = load_json(config_path)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load {config_path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"Invalid config file (expected JSON object): {config_path}")

    if secrets_path.exists():
        try:
            secrets = load_json(secrets_path)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load {secrets_path}: {e}") from e
        if not isinstance(secrets, dict):
            raise ConfigError(f"Invalid secrets file (expected JSON object): {secrets_path}")
        _deep_merge_dict(config, secrets)

    if use_env:
        load_dotenv(base_dir / ".env")
        apply_env_overrides(config)
    return config, config_path, secrets_path


def is_placeholder_secret(value: Any) -> bool:
    """Return True if the provided secret looks like a template/placeholder value."""
    if value is None:
        return True
    s = str(value).strip()
    if not s:
        return True
    upper = s.upper()
    if upper.startswith("PUT_") or upper.endswith("_HERE"):
        return True
    if upper in {"CHANGEME", "REPLACE_ME", "YOUR_TOKEN_HERE"}:
        return True
    return False


def mask_secret(value: Any, show_last: int = 4) -> str:
    """Mask a secret for printing (never output full tokens)."""
    if value is None:
        return "<missing>"
    s = str(value)
    if not s:
        return "<missing>"
    if len(s) <= show_last:
        return "*" * len(s)
    return ("*" * (len(s) - show_last)) + s[-show_last:]
