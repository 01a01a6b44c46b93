from __future__ import annotations

import logging
from typing import Any

import requests

from .base import (
    AggregateStats,
    Answer,
    ApiResult,
    FeedbackItem,
    MarketplaceClient,
    Photo,
    Video,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://feedbacks-api.wildberries.ru"


class WildberriesAPIError(RuntimeError):
    pass


class WildberriesClient(MarketplaceClient):
    code = "wb"
    name = "Wildberries"

    def __init__(self, api_token: str, timeout: int = 30) -> None:
        self.api_token = api_token
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": api_token,
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
    ) -> dict[str, Any]:
        url = f"{BASE_URL}{path}"
        try:
            resp = self.session.request(
                method, url, params=params, json=json, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise WildberriesAPIError(str(exc)) from exc
        if resp.status_code not in (200, 204):
            raise WildberriesAPIError(f"HTTP error! status: {resp.status_code}: {resp.text[:200]}")
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            payload = resp.json()
        except ValueError as exc:
            raise WildberriesAPIError(f"WB API invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise WildberriesAPIError(f"WB API unexpected payload: {str(payload)[:200]}")
        if payload.get("error"):
            message = payload.get("errorText") or payload
            raise WildberriesAPIError(f"WB API error payload: {message}")
        return payload

    def fetch_page(self, is_answered: bool, take: int, skip: int) -> ApiResult[list[FeedbackItem]]:
        if take < 0 or skip < 0:
            return ApiResult.failure("take and skip must be non-negative")
        params = {
            "isAnswered": "true" if is_answered else "false",
            "take": take,
            "skip": skip,
            "order": "dateDesc",
        }
        try:
            data = self._request("GET", "/api/v1/feedbacks", params=params)
        except WildberriesAPIError as exc:
            logger.warning("WB feedbacks fetch failed (skip=%s): %s", skip, exc)
            return ApiResult.failure(str(exc))
        feedbacks = _section(data).get("feedbacks") or []
        if not isinstance(feedbacks, list):
            return ApiResult.failure(f"WB API unexpected feedbacks: {str(feedbacks)[:200]}")
        return ApiResult.success([self._normalize(item) for item in feedbacks if isinstance(item, dict)])

    def submit_reply(self, feedback_id: str, text: str) -> ApiResult[dict[str, Any]]:
        payload = {"id": feedback_id, "text": text}
        try:
            data = self._request("POST", "/api/v1/feedbacks/answer", json=payload)
        except WildberriesAPIError as exc:
            logger.warning("WB reply for feedback %s failed: %s", feedback_id, exc)
            return ApiResult.failure(str(exc))
        return ApiResult.success(data or {"status": "no_content"})

    def fetch_stats(self) -> ApiResult[AggregateStats]:
        try:
            data = self._request("GET", "/api/v1/feedbacks/count-unanswered")
        except WildberriesAPIError as exc:
            logger.warning("WB unanswered count failed: %s", exc)
            return ApiResult.failure(str(exc))
        stats = _section(data)
        return ApiResult.success(
            AggregateStats(
                count_unanswered=_to_int(stats.get("countUnanswered")) or 0,
                valuation=stats.get("valuation") or 0,
            )
        )

    def _normalize(self, item: dict[str, Any]) -> FeedbackItem:
        product = item.get("productDetails") or {}
        if not isinstance(product, dict):
            product = {}
        product_nm_id = product.get("nmId")
        if product_nm_id is None:
            product_nm_id = product.get("nmID")
        last_order = item.get("lastOrderShkId")
        return FeedbackItem(
            id=str(item.get("id")),
            rating=_to_int(item.get("productValuation")) or 0,
            text=str(item.get("text") or ""),
            pros=str(item.get("pros") or ""),
            cons=str(item.get("cons") or ""),
            user_name=str(item.get("userName") or ""),
            created_at=item.get("createdDate"),
            product_name=str(product.get("productName") or ""),
            brand=str(product.get("brandName") or ""),
            supplier_article=str(product.get("supplierArticle") or ""),
            nm_id=_to_int(product_nm_id),
            photos=tuple(_normalize_photos(item.get("photoLinks"))),
            video=_normalize_video(item.get("video")),
            answer=_normalize_answer(item.get("answer")),
            tags=tuple(str(tag) for tag in item.get("bables") or [] if tag),
            was_viewed=bool(item.get("wasViewed")),
            is_returned=bool(item.get("returnProductOrdersDate")),
            return_date=item.get("returnProductOrdersDate"),
            color=str(item.get("color") or ""),
            subject_name=str(item.get("subjectName") or ""),
            parent_feedback_id=_optional_str(item.get("parentFeedbackId")),
            child_feedback_id=_optional_str(item.get("childFeedbackId")),
            last_order_id=_optional_str(last_order),
            last_order_created_at=item.get("lastOrderCreatedAt"),
            raw_json=item,
        )


def _section(data: dict[str, Any]) -> dict[str, Any]:
    section = data.get("data")
    return section if isinstance(section, dict) else {}


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _normalize_photos(raw: Any) -> list[Photo]:
    photos = []
    for link in raw or []:
        if not isinstance(link, dict):
            continue
        full_size = str(link.get("fullSize") or "")
        thumbnail = str(link.get("miniSize") or full_size)
        if not full_size and not thumbnail:
            continue
        photos.append(Photo(full_size=full_size or thumbnail, thumbnail=thumbnail))
    return photos


def _normalize_video(raw: Any) -> Video | None:
    if not isinstance(raw, dict) or not raw.get("link"):
        return None
    return Video(
        preview_image=str(raw.get("previewImage") or ""),
        link=str(raw["link"]),
        duration_sec=_to_int(raw.get("durationSec") or raw.get("duration_sec")),
    )


def _normalize_answer(raw: Any) -> Answer | None:
    if not isinstance(raw, dict) or not raw.get("text"):
        return None
    return Answer(
        text=str(raw["text"]),
        state=str(raw.get("state") or "none"),
        editable=bool(raw.get("editable")),
    )
