from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

import requests

from .base import ApiResult, Order

logger = logging.getLogger(__name__)

BASE_URL = "https://statistics-api.wildberries.ru"


class WildberriesStatisticsClient:
    """Read-only order lookup. Uses its own token, separate from the feedbacks one."""

    code = "wb_statistics"
    name = "Wildberries Statistics"

    def __init__(self, api_token: str, timeout: int = 30) -> None:
        self.api_token = api_token
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": api_token,
                "Accept": "application/json",
            }
        )

    def fetch_orders(self, date_from: date | datetime | str) -> ApiResult[list[Order]]:
        if isinstance(date_from, (date, datetime)):
            date_from = date_from.isoformat()
        url = f"{BASE_URL}/api/v1/supplier/orders"
        try:
            resp = self.session.get(url, params={"dateFrom": date_from}, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("WB statistics request failed: %s", exc)
            return ApiResult.failure(str(exc))
        if resp.status_code != 200:
            logger.warning("WB statistics API error %s", resp.status_code)
            return ApiResult.failure(f"HTTP error! status: {resp.status_code}: {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError as exc:
            return ApiResult.failure(f"WB statistics API invalid JSON: {exc}")
        if not isinstance(payload, list):
            return ApiResult.failure(f"WB statistics API unexpected payload: {str(payload)[:200]}")
        return ApiResult.success([self._normalize(item) for item in payload if isinstance(item, dict)])

    def orders_for_article(
        self,
        date_from: date | datetime | str,
        nm_id: int | None = None,
        supplier_article: str = "",
    ) -> ApiResult[list[Order]]:
        result = self.fetch_orders(date_from)
        if not result.ok:
            return result
        matched = [
            order
            for order in result.data or []
            if (nm_id is not None and order.nm_id == nm_id)
            or (supplier_article and order.supplier_article == supplier_article)
        ]
        return ApiResult.success(matched)

    def _normalize(self, item: dict[str, Any]) -> Order:
        nm_id = item.get("nmId")
        try:
            nm_id = int(nm_id) if nm_id is not None else None
        except (TypeError, ValueError):
            nm_id = None
        total_price = item.get("totalPrice")
        try:
            total_price = float(total_price) if total_price is not None else None
        except (TypeError, ValueError):
            total_price = None
        return Order(
            order_id=str(item.get("srid") or item.get("gNumber") or item.get("odid") or ""),
            created_at=item.get("date"),
            nm_id=nm_id,
            supplier_article=str(item.get("supplierArticle") or ""),
            total_price=total_price,
            is_cancel=bool(item.get("isCancel")),
            raw_json=item,
        )
