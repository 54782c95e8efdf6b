from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from store_config import ConfigError, is_placeholder_secret, load_config_with_secrets, mask_secret


REPO_ROOT = Path(__file__).resolve().parent
STORE_DIR = REPO_ROOT / "CrystalStore"


def _check_ids(cfg: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    for key in ("guild_id", "support_role_id", "ticket_category_id", "log_channel_id", "panel_channel_id", "owner_id"):
        raw = cfg.get(key)
        if raw in (None, "", 0):
            continue
        try:
            int(str(raw).strip())
        except ValueError:
            errors.append(f"{key} must be a numeric Discord id (got {raw!r})")
    return errors


def _check_products(path: Path) -> List[str]:
    if not path.exists():
        return [f"Missing products file: {path}"]
    try:
        raw = json.loads(path.read_text(encoding="utf-8") or "[]")
    except (OSError, json.JSONDecodeError) as e:
        return [f"Failed to load {path}: {e}"]
    if isinstance(raw, dict):
        raw = raw.get("products")
    if not isinstance(raw, list) or not raw:
        return [f"No products defined in {path}"]
    return []


def check(base_dir: Path = STORE_DIR) -> Tuple[List[str], List[str], Dict[str, Any]]:
    """(errors, warnings, merged_config) for the store config under base_dir."""
    errors: List[str] = []
    warnings: List[str] = []
    try:
        cfg, _config_path, secrets_path = load_config_with_secrets(base_dir)
    except ConfigError as e:
        return [str(e)], [], {}

    if is_placeholder_secret(cfg.get("bot_token")):
        errors.append("bot_token missing/placeholder (config.secrets.json or DISCORD_TOKEN)")
    if not secrets_path.exists():
        warnings.append(f"Missing secrets file: {secrets_path} (environment variables only)")

    stripe_cfg = cfg.get("stripe") if isinstance(cfg.get("stripe"), dict) else {}
    cm_cfg = cfg.get("cryptomus") if isinstance(cfg.get("cryptomus"), dict) else {}
    has_card = not is_placeholder_secret(stripe_cfg.get("secret_key"))
    has_crypto = not is_placeholder_secret(cm_cfg.get("merchant_id")) and not is_placeholder_secret(cm_cfg.get("api_key"))
    if not has_card and not has_crypto:
        errors.append("No payment provider configured (stripe.secret_key or cryptomus.merchant_id + api_key)")
    if has_card and is_placeholder_secret(stripe_cfg.get("webhook_secret")):
        warnings.append("stripe.webhook_secret not set: Stripe webhooks will be accepted unverified")
    if not str(cfg.get("public_base_url") or "").strip():
        warnings.append("public_base_url not set: providers cannot reach the webhook endpoints")

    errors.extend(_check_ids(cfg))

    products = str(((cfg.get("paths") or {}) if isinstance(cfg.get("paths"), dict) else {}).get("products") or "").strip()
    products_path = Path(products) if products else base_dir / "products.json"
    if not products_path.is_absolute():
        products_path = base_dir / products_path
    errors.extend(_check_products(products_path))
    return errors, warnings, cfg


def run(base_dir: Optional[Path] = None) -> int:
    base = Path(base_dir) if base_dir else STORE_DIR
    print("Crystal Store config preflight (no Discord connection)\n")
    errors, warnings, cfg = check(base)

    print(f"  - config: {base / 'config.json'}")
    print(f"  - secrets: {base / 'config.secrets.json'}")
    example_path = base / "config.secrets.example.json"
    if example_path.exists():
        print(f"  - secrets template: {example_path}")
    token = str(cfg.get("bot_token") or "").strip()
    if token:
        print(f"  - bot_token: {mask_secret(token)}")
    for section, key in (("stripe", "secret_key"), ("stripe", "webhook_secret"), ("cryptomus", "api_key")):
        val = str(((cfg.get(section) or {}) if isinstance(cfg.get(section), dict) else {}).get(key) or "").strip()
        if val:
            print(f"  - {section}.{key}: {mask_secret(val)}")
    for w in warnings:
        print(f"  - warning: {w}")
    for e in errors:
        print(f"  - error: {e}")
    print("")

    if errors:
        if example_path.exists() and not (base / "config.secrets.json").exists():
            print("next: copy the template to config.secrets.json and fill real values")
        print("Result: FAIL")
        return 2
    print("Result: OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(run(Path(sys.argv[1]) if len(sys.argv) > 1 else None))
