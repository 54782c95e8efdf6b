from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger("crystal-store")


def as_int(v: object) -> int:
    """Discord ids / ports from config or env strings; 0 when unusable."""
    if isinstance(v, bool):
        return 0
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return 0


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_dt_any(value: str | int | float | None) -> datetime | None:
    """Order timestamps (ISO 8601, or unix seconds/ms from provider payloads) as aware UTC."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, (int, float)) or str(value).strip().lstrip("-").replace(".", "", 1).isdigit():
            secs = float(value)
            if abs(secs) > 1.0e11:
                secs /= 1000.0
            return datetime.fromtimestamp(secs, tz=timezone.utc)
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def fmt_datetime(value: str | None) -> str:
    """Receipt-style timestamp like '2026-01-08 14:03 UTC'."""
    dt = parse_dt_any(value)
    return dt.strftime("%Y-%m-%d %H:%M UTC") if dt else "—"


def fmt_money(amount: object, currency: str | None = None) -> str:
    """Provider amounts for display: '$9.99' for USD, '0.0021 BTC' otherwise."""
    if amount is None or amount == "":
        return ""
    try:
        value = float(str(amount))
    except (TypeError, ValueError):
        return str(amount)
    cur = str(currency or "").strip().upper()
    if cur in ("", "USD"):
        return f"${value:.2f}"
    return f"{amount} {cur}"


def load_json(path: Path) -> dict:
    """JSON object from disk; {} when missing, empty or unreadable (logged)."""
    path = Path(path)
    if not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8").strip()
        obj = json.loads(text) if text else {}
    except (OSError, json.JSONDecodeError) as e:
        log.error(f"store: failed to read {path}: {e}; treating as empty")
        return {}
    return obj if isinstance(obj, dict) else {}


def save_json(path: Path, data: dict) -> None:
    """Atomic write: tmp file in the same directory, then os.replace."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp.{os.getpid()}")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    # os.replace can fail transiently on Windows while a reader holds the file.
    for attempt in range(6):
        try:
            os.replace(tmp, path)
            return
        except OSError:
            if attempt == 5:
                tmp.unlink(missing_ok=True)
                raise
            time.sleep(0.05)
