from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from CrystalStore.store_utils import as_int as _as_int

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class StoreConfig:
    bot_token: str
    store_name: str
    public_base_url: str
    http_host: str
    http_port: int
    guild_id: int
    support_role_id: int
    owner_id: int
    ticket_category_id: int
    log_channel_id: int
    panel_channel_id: int
    close_command: str
    close_delay_seconds: int
    ticket_lock_seconds: int
    stripe_secret_key: str
    stripe_webhook_secret: str
    cryptomus_merchant_id: str
    cryptomus_api_key: str
    cryptomus_webhook_secret: str
    orders_path: Path
    products_path: Path
    invoices_dir: Path


def _path(raw: object, default: Path) -> Path:
    s = str(raw or "").strip()
    if not s:
        return default
    p = Path(s)
    return p if p.is_absolute() else (BASE_DIR / p)


def build_store_config(config: dict) -> StoreConfig:
    """Normalise the merged config dict (ids as ints, secrets as stripped strings)."""
    root = config if isinstance(config, dict) else {}
    st = root.get("stripe") if isinstance(root.get("stripe"), dict) else {}
    cm = root.get("cryptomus") if isinstance(root.get("cryptomus"), dict) else {}
    paths = root.get("paths") if isinstance(root.get("paths"), dict) else {}

    def _s(v: object) -> str:
        return str(v or "").strip()

    cm_api_key = _s(cm.get("api_key"))
    return StoreConfig(
        bot_token=_s(root.get("bot_token")),
        store_name=_s(root.get("store_name")) or "Crystal Store",
        public_base_url=_s(root.get("public_base_url")).rstrip("/"),
        http_host=_s(root.get("http_host")) or "0.0.0.0",
        http_port=_as_int(root.get("http_port")) or 20180,
        guild_id=_as_int(root.get("guild_id")),
        support_role_id=_as_int(root.get("support_role_id")),
        owner_id=_as_int(root.get("owner_id")),
        ticket_category_id=_as_int(root.get("ticket_category_id")),
        log_channel_id=_as_int(root.get("log_channel_id")),
        panel_channel_id=_as_int(root.get("panel_channel_id")),
        close_command=_s(root.get("close_command")) or "+dn",
        close_delay_seconds=max(0, _as_int(root.get("close_delay_seconds", 10))),
        ticket_lock_seconds=max(1, _as_int(root.get("ticket_lock_seconds")) or 15),
        stripe_secret_key=_s(st.get("secret_key")),
        stripe_webhook_secret=_s(st.get("webhook_secret")),
        cryptomus_merchant_id=_s(cm.get("merchant_id")),
        cryptomus_api_key=cm_api_key,
        # Callbacks are signed with the payment API key unless a dedicated secret is set.
        cryptomus_webhook_secret=_s(cm.get("webhook_secret")) or cm_api_key,
        orders_path=_path(paths.get("orders"), BASE_DIR / "data" / "orders.json"),
        products_path=_path(paths.get("products"), BASE_DIR / "products.json"),
        invoices_dir=_path(paths.get("invoices"), BASE_DIR / "invoices"),
    )
