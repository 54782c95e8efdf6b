from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger("crystal-store")


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    emoji: str = ""

    def snapshot(self) -> dict:
        """The fields copied onto an order at selection time."""
        return {"id": self.id, "name": self.name, "price": float(self.price)}


class Catalog:
    """Products loaded once from products.json."""

    def __init__(self, products: list[Product]):
        self._products = list(products)
        self._by_id = {p.id: p for p in self._products}

    def __iter__(self):
        return iter(self._products)

    def __len__(self) -> int:
        return len(self._products)

    def get(self, product_id: str) -> Product | None:
        return self._by_id.get(str(product_id or "").strip())

    @classmethod
    def from_file(cls, path: Path) -> "Catalog":
        p = Path(path)
        if not p.exists():
            raise RuntimeError(f"Missing {p} (required).")
        try:
            raw = json.loads(p.read_text(encoding="utf-8") or "[]")
        except Exception as e:
            raise RuntimeError(f"Failed to load {p}: {e}") from e
        if isinstance(raw, dict):
            raw = raw.get("products")
        if not isinstance(raw, list):
            raise RuntimeError(f"Invalid {p}: expected a list of products.")

        products: list[Product] = []
        seen: set[str] = set()
        for item in raw:
            if not isinstance(item, dict):
                continue
            pid = str(item.get("id") or "").strip()
            name = str(item.get("name") or "").strip()
            if not pid or not name:
                log.warning(f"catalog: skipping product without id/name: {item!r}")
                continue
            if pid in seen:
                log.warning(f"catalog: duplicate product id={pid}; keeping the first")
                continue
            try:
                price = round(float(item.get("price")), 2)
            except (TypeError, ValueError):
                log.warning(f"catalog: skipping product id={pid} with invalid price")
                continue
            seen.add(pid)
            products.append(
                Product(
                    id=pid,
                    name=name,
                    price=price,
                    emoji=str(item.get("emoji") or "").strip(),
                )
            )
        return cls(products)
