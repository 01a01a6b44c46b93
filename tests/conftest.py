import pytest

from reply_desk.config import Settings
from reply_desk.marketplaces.base import (
    AggregateStats,
    Answer,
    ApiResult,
    FeedbackItem,
    MarketplaceClient,
    Photo,
    Video,
)


def build_item(feedback_id, rating=5, **overrides):
    fields = {
        "id": str(feedback_id),
        "rating": rating,
        "text": f"Отзыв {feedback_id}",
        "pros": "",
        "cons": "",
        "user_name": "Анна",
        "created_at": "2024-06-01T10:00:00Z",
        "product_name": "Кружка",
        "brand": "Acme",
        "supplier_article": "MUG-1",
        "nm_id": 12345,
    }
    fields.update(overrides)
    return FeedbackItem(**fields)


class FakeSource(MarketplaceClient):
    """Serves pre-built pages in order and records every call."""

    def __init__(self, pages=None, reply_result=None, stats=None):
        self.pages = list(pages or [])
        self.reply_result = reply_result or ApiResult.success({})
        self.stats = stats or ApiResult.success(AggregateStats(count_unanswered=3, valuation=4.8))
        self.fetch_calls = []
        self.reply_calls = []

    def fetch_page(self, is_answered, take, skip):
        self.fetch_calls.append((is_answered, take, skip))
        if not self.pages:
            return ApiResult.success([])
        page = self.pages.pop(0)
        if isinstance(page, ApiResult):
            return page
        return ApiResult.success(page)

    def submit_reply(self, feedback_id, text):
        self.reply_calls.append((feedback_id, text))
        return self.reply_result

    def fetch_stats(self):
        return self.stats


class FakeGenerator:
    def __init__(self, replies=None):
        self.replies = list(replies or ["Спасибо за отзыв!"])
        self.calls = []

    def generate_reply(self, item, instructions=""):
        self.calls.append((item.id, instructions))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, ApiResult):
            return reply
        return ApiResult.success(reply)


@pytest.fixture
def make_item():
    return build_item


@pytest.fixture
def photo():
    return Photo(full_size="https://img.example/1.jpg", thumbnail="https://img.example/1-small.jpg")


@pytest.fixture
def video():
    return Video(preview_image="https://img.example/v.jpg", link="https://video.example/v.m3u8", duration_sec=75)


@pytest.fixture
def answer():
    return Answer(text="Спасибо!", state="wbRu", editable=False)


@pytest.fixture
def settings():
    return Settings(
        wb_api_token=None,
        wb_statistics_token=None,
        openai_api_key=None,
        openai_model="gpt-4o-mini",
        openai_temperature=0.7,
        openai_max_tokens=150,
        feedback_take=3,
        page_size=5,
        ai_instructions="",
        image_proxies=("https://proxy.example/?{url}",),
        request_timeout_sec=5,
        secret_key="test-secret",
        host="127.0.0.1",
        port=8000,
        log_level="INFO",
    )
