"""In-memory feedback collection with incremental fetch, filtering and paging.

The engine owns the list of feedback items loaded from the provider for the
current tab. ``loaded_count`` and ``has_more`` track provider-side fetch
progress only; items removed locally after a reply do not move the offset.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Sequence

from reply_desk.marketplaces.base import ApiResult, FeedbackItem, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TAKE = 100
DEFAULT_PAGE_SIZE = 10
PAGE_SIZE_OPTIONS = (5, 10, 20, 50)
ALL_RATINGS = frozenset({1, 2, 3, 4, 5})

FetchPage = Callable[[bool, int, int], ApiResult[list[FeedbackItem]]]


class MediaFilter(str, Enum):
    ANY = "any"
    WITH_MEDIA = "with"
    WITHOUT_MEDIA = "without"


@dataclass(frozen=True)
class FilterCriteria:
    ratings: frozenset[int] = ALL_RATINGS
    media: MediaFilter = MediaFilter.ANY
    tags: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_form(
        cls,
        ratings: Iterable[str] | None,
        media: str | None,
        tags: Iterable[str] | None,
    ) -> "FilterCriteria":
        parsed_ratings = set()
        for value in ratings or []:
            try:
                rating = int(value)
            except (TypeError, ValueError):
                continue
            if rating in ALL_RATINGS:
                parsed_ratings.add(rating)
        try:
            media_filter = MediaFilter(media or MediaFilter.ANY.value)
        except ValueError:
            media_filter = MediaFilter.ANY
        parsed_tags = {str(tag).strip() for tag in tags or [] if str(tag).strip()}
        return cls(
            ratings=frozenset(parsed_ratings),
            media=media_filter,
            tags=frozenset(parsed_tags),
        )


@dataclass(frozen=True)
class FeedbackView:
    visible: tuple[FeedbackItem, ...]
    page_items: tuple[FeedbackItem, ...]
    page: int
    page_size: int
    total_pages: int

    @property
    def visible_count(self) -> int:
        return len(self.visible)


def matches(item: FeedbackItem, criteria: FilterCriteria) -> bool:
    if item.rating in ALL_RATINGS:
        if item.rating not in criteria.ratings:
            return False
    elif criteria.ratings != ALL_RATINGS:
        # unrated items only pass while the rating filter is untouched
        return False
    if criteria.media is not MediaFilter.ANY:
        if item.has_media != (criteria.media is MediaFilter.WITH_MEDIA):
            return False
    if criteria.tags and not criteria.tags.intersection(item.tags):
        return False
    return True


def total_pages_for(count: int, page_size: int) -> int:
    return max(1, math.ceil(count / page_size))


def derive_view(
    loaded: Sequence[FeedbackItem],
    criteria: FilterCriteria,
    page: int,
    page_size: int,
) -> FeedbackView:
    if page_size < 1:
        raise ValidationError(f"page size must be positive, got {page_size}")
    visible = tuple(item for item in loaded if matches(item, criteria))
    total_pages = total_pages_for(len(visible), page_size)
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    return FeedbackView(
        visible=visible,
        page_items=visible[start : start + page_size],
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


class FeedbackEngine:
    def __init__(
        self,
        fetch_page: FetchPage,
        take: int = DEFAULT_TAKE,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if take < 1:
            raise ValidationError(f"take must be positive, got {take}")
        if page_size not in PAGE_SIZE_OPTIONS:
            raise ValidationError(f"page size must be one of {PAGE_SIZE_OPTIONS}, got {page_size}")
        self._fetch_page = fetch_page
        self.take = take
        self.loaded: list[FeedbackItem] = []
        self.loaded_count = 0
        self.has_more = True
        self.criteria = FilterCriteria()
        self.page = 1
        self.page_size = page_size
        self.is_loading = False
        self.is_loading_more = False
        self.epoch = 0

    @property
    def can_load_more(self) -> bool:
        return self.has_more and not self.is_loading and not self.is_loading_more

    def reset(self, is_answered: bool) -> ApiResult[list[FeedbackItem]]:
        self.epoch += 1
        epoch = self.epoch
        self.loaded = []
        self.loaded_count = 0
        self.has_more = True
        self.page = 1
        self.is_loading = True
        self.is_loading_more = False
        try:
            result = self._fetch_page(is_answered, self.take, 0)
        finally:
            if epoch == self.epoch:
                self.is_loading = False
        if epoch != self.epoch:
            logger.warning("Discarding stale reset response (epoch %s, now %s)", epoch, self.epoch)
            return result
        if result.ok:
            items = list(result.data or [])
            self.loaded = _unique_by_id(items)
            self.loaded_count = len(items)
            self.has_more = len(items) == self.take
            logger.info(
                "Loaded %s feedback(s) (answered=%s, has_more=%s)",
                len(items),
                is_answered,
                self.has_more,
            )
        return result

    def load_more(self, is_answered: bool) -> ApiResult[list[FeedbackItem]] | None:
        if not self.can_load_more:
            return None
        epoch = self.epoch
        self.is_loading_more = True
        try:
            result = self._fetch_page(is_answered, self.take, self.loaded_count)
        finally:
            if epoch == self.epoch:
                self.is_loading_more = False
        if epoch != self.epoch:
            logger.warning("Discarding stale load-more response (epoch %s, now %s)", epoch, self.epoch)
            return result
        if result.ok:
            items = list(result.data or [])
            known = {item.id for item in self.loaded}
            fresh = [item for item in _unique_by_id(items) if item.id not in known]
            if len(fresh) != len(items):
                logger.info("Skipped %s duplicate feedback(s) on load more", len(items) - len(fresh))
            self.loaded.extend(fresh)
            self.loaded_count += len(items)
            self.has_more = len(items) == self.take
            self.page = 1
            logger.info(
                "Loaded %s more feedback(s), %s fetched in total (has_more=%s)",
                len(items),
                self.loaded_count,
                self.has_more,
            )
        return result

    def set_criteria(self, criteria: FilterCriteria) -> None:
        self.criteria = criteria
        self.page = 1

    def set_page(self, page: int) -> None:
        self.page = min(max(1, page), self.view().total_pages)

    def set_page_size(self, page_size: int) -> None:
        if page_size not in PAGE_SIZE_OPTIONS:
            raise ValidationError(f"page size must be one of {PAGE_SIZE_OPTIONS}, got {page_size}")
        self.page_size = page_size
        self.page = 1

    def remove_item(self, feedback_id: str) -> bool:
        before = len(self.loaded)
        self.loaded = [item for item in self.loaded if item.id != feedback_id]
        removed = len(self.loaded) != before
        if removed:
            self.page = 1
        return removed

    def get(self, feedback_id: str) -> FeedbackItem | None:
        for item in self.loaded:
            if item.id == feedback_id:
                return item
        return None

    def available_tags(self) -> list[str]:
        tags = {tag for item in self.loaded for tag in item.tags}
        return sorted(tags)

    def view(self) -> FeedbackView:
        return derive_view(self.loaded, self.criteria, self.page, self.page_size)

    def current_page(self) -> tuple[FeedbackItem, ...]:
        return self.view().page_items


def _unique_by_id(items: Iterable[FeedbackItem]) -> list[FeedbackItem]:
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique
