from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

T = TypeVar("T")

ANSWER_STATES = {
    "wbRu": "published",
    "published": "published",
    "none": "none",
    "reviewRequired": "syncing",
    "syncing": "syncing",
}


class ValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """Outcome of a provider call. Clients return it instead of raising."""

    ok: bool
    data: T | None = None
    error_text: str = ""

    @classmethod
    def success(cls, data: T | None = None) -> "ApiResult[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error_text: str) -> "ApiResult[T]":
        return cls(ok=False, error_text=error_text)


@dataclass(frozen=True)
class Photo:
    full_size: str
    thumbnail: str


@dataclass(frozen=True)
class Video:
    preview_image: str
    link: str
    duration_sec: int | None


@dataclass(frozen=True)
class Answer:
    text: str
    state: str
    editable: bool

    @property
    def publication_state(self) -> str:
        return ANSWER_STATES.get(self.state, "unknown")


@dataclass(frozen=True)
class FeedbackItem:
    id: str
    rating: int
    text: str
    pros: str
    cons: str
    user_name: str
    created_at: str | None
    product_name: str
    brand: str
    supplier_article: str
    nm_id: int | None
    photos: tuple[Photo, ...] = ()
    video: Video | None = None
    answer: Answer | None = None
    tags: tuple[str, ...] = ()
    was_viewed: bool = False
    is_returned: bool = False
    return_date: str | None = None
    color: str = ""
    subject_name: str = ""
    parent_feedback_id: str | None = None
    child_feedback_id: str | None = None
    last_order_id: str | None = None
    last_order_created_at: str | None = None
    raw_json: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_media(self) -> bool:
        return bool(self.photos) or self.video is not None

    @property
    def is_answered(self) -> bool:
        return self.answer is not None


@dataclass(frozen=True)
class AggregateStats:
    count_unanswered: int
    valuation: float | str

    def decrement(self) -> "AggregateStats":
        return replace(self, count_unanswered=max(0, self.count_unanswered - 1))


@dataclass(frozen=True)
class Order:
    order_id: str
    created_at: str | None
    nm_id: int | None
    supplier_article: str
    total_price: float | None
    is_cancel: bool
    raw_json: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class MarketplaceClient:
    code: str
    name: str

    def fetch_page(self, is_answered: bool, take: int, skip: int) -> ApiResult[list[FeedbackItem]]:
        raise NotImplementedError

    def submit_reply(self, feedback_id: str, text: str) -> ApiResult[dict[str, Any]]:
        raise NotImplementedError

    def fetch_stats(self) -> ApiResult[AggregateStats]:
        raise NotImplementedError
