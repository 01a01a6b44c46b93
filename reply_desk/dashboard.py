from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta

from reply_desk.ai import ReplyGenerator
from reply_desk.config import Settings
from reply_desk.engine import FeedbackEngine, FeedbackView, FilterCriteria, PAGE_SIZE_OPTIONS
from reply_desk.marketplaces.base import AggregateStats, ApiResult, Order, ValidationError
from reply_desk.marketplaces.wb import WildberriesClient
from reply_desk.marketplaces.wb_statistics import WildberriesStatisticsClient
from reply_desk.workflow import ReplyWorkflow

logger = logging.getLogger(__name__)

TABS = {
    "unanswered": "Без ответа",
    "answered": "С ответами",
}
ORDER_LOOKBACK_DAYS = 30


class Dashboard:
    """One browser session: connected clients plus the state built on them."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.source: WildberriesClient | None = None
        self.generator: ReplyGenerator | None = None
        self.statistics: WildberriesStatisticsClient | None = None
        self.engine: FeedbackEngine | None = None
        self.workflow: ReplyWorkflow | None = None
        self.stats: AggregateStats | None = None
        self.active_tab = "unanswered"
        self.instructions = settings.ai_instructions
        self.error = ""
        self.empty_state = False
        self.last_active = time.monotonic()

    def touch(self) -> None:
        self.last_active = time.monotonic()

    @property
    def is_connected(self) -> bool:
        return self.engine is not None

    @property
    def is_answered_tab(self) -> bool:
        return self.active_tab == "answered"

    def connect(
        self,
        wb_token: str | None,
        openai_key: str | None,
        statistics_token: str | None = None,
    ) -> bool:
        wb_token = (wb_token or "").strip()
        openai_key = (openai_key or "").strip()
        if not wb_token or not openai_key:
            raise ValidationError("Введите оба токена")
        self.disconnect()
        source = WildberriesClient(wb_token, timeout=self.settings.request_timeout_sec)
        stats_result = source.fetch_stats()
        if not stats_result.ok:
            self.error = f"Ошибка подключения к WB: {stats_result.error_text}"
            return False
        self.source = source
        self.generator = ReplyGenerator(
            openai_key,
            model=self.settings.openai_model,
            temperature=self.settings.openai_temperature,
            max_tokens=self.settings.openai_max_tokens,
            timeout=self.settings.request_timeout_sec,
        )
        statistics_token = (statistics_token or "").strip()
        self.statistics = (
            WildberriesStatisticsClient(statistics_token, timeout=self.settings.request_timeout_sec)
            if statistics_token
            else None
        )
        self.engine = FeedbackEngine(
            source.fetch_page,
            take=self.settings.feedback_take,
            page_size=self.settings.page_size,
        )
        self.workflow = ReplyWorkflow(self.engine, source, self.generator, on_sent=self._on_sent)
        self.stats = stats_result.data
        logger.info("Connected to WB, %s unanswered feedback(s)", self.stats.count_unanswered)
        self.refresh()
        return True

    def disconnect(self) -> None:
        for client in (self.source, self.statistics):
            if client is not None:
                client.session.close()
        self.source = None
        self.generator = None
        self.statistics = None
        self.engine = None
        self.workflow = None
        self.stats = None
        self.empty_state = False
        self.error = ""

    def switch_tab(self, tab: str) -> None:
        if tab not in TABS:
            raise ValidationError(f"Неизвестная вкладка: {tab}")
        self.active_tab = tab
        self.refresh()

    def refresh(self) -> ApiResult:
        engine = self._require_engine()
        self.error = ""
        result = engine.reset(self.is_answered_tab)
        if result.ok:
            self.empty_state = not engine.loaded
        else:
            self.empty_state = False
            self.error = f"Ошибка загрузки: {result.error_text}"
        self.workflow.prune()
        return result

    def reload_stats(self) -> ApiResult[AggregateStats]:
        self._require_engine()
        result = self.source.fetch_stats()
        if result.ok:
            self.stats = result.data
        else:
            self.error = f"Ошибка загрузки статистики: {result.error_text}"
        return result

    def load_more(self) -> ApiResult | None:
        engine = self._require_engine()
        self.error = ""
        result = engine.load_more(self.is_answered_tab)
        if result is not None and not result.ok:
            self.error = f"Ошибка загрузки: {result.error_text}"
        return result

    def set_filter(self, criteria: FilterCriteria) -> None:
        self._require_engine().set_criteria(criteria)

    def reset_filter(self) -> None:
        self._require_engine().set_criteria(FilterCriteria())

    def set_page(self, page: int) -> None:
        self._require_engine().set_page(page)

    def set_page_size(self, page_size: int) -> None:
        if page_size not in PAGE_SIZE_OPTIONS:
            raise ValidationError(f"Размер страницы должен быть одним из {PAGE_SIZE_OPTIONS}")
        self._require_engine().set_page_size(page_size)

    def set_instructions(self, instructions: str) -> None:
        self.instructions = (instructions or "").strip()

    def view(self) -> FeedbackView:
        return self._require_engine().view()

    def generate(self, feedback_id: str) -> ApiResult[str]:
        workflow = self._require_workflow()
        self.error = ""
        result = workflow.generate(feedback_id, self.instructions)
        if not result.ok:
            self.error = result.error_text
        return result

    def toggle_edit(self, feedback_id: str) -> bool:
        return self._require_workflow().toggle_edit(feedback_id)

    def update_draft(self, feedback_id: str, text: str) -> None:
        self._require_workflow().update_text(feedback_id, text)

    def send(self, feedback_id: str) -> ApiResult:
        workflow = self._require_workflow()
        self.error = ""
        result = workflow.send(feedback_id)
        if not result.ok:
            self.error = workflow.last_error
        elif self.engine is not None and not self.engine.loaded:
            self.empty_state = True
        return result

    def discard_draft(self, feedback_id: str) -> None:
        self._require_workflow().discard(feedback_id)

    def recent_orders(self, feedback_id: str, today: date | None = None) -> ApiResult[list[Order]]:
        engine = self._require_engine()
        if self.statistics is None:
            raise ValidationError("Токен статистики WB не указан.")
        item = engine.get(feedback_id)
        if item is None:
            raise ValidationError(f"Отзыв {feedback_id} не найден.")
        date_from = (today or datetime.now().date()) - timedelta(days=ORDER_LOOKBACK_DAYS)
        result = self.statistics.orders_for_article(
            date_from,
            nm_id=item.nm_id,
            supplier_article=item.supplier_article,
        )
        if not result.ok:
            self.error = f"Ошибка загрузки заказов: {result.error_text}"
        return result

    def clear_error(self) -> None:
        self.error = ""

    def _on_sent(self, feedback_id: str) -> None:
        if self.stats is not None:
            self.stats = self.stats.decrement()

    def _require_engine(self) -> FeedbackEngine:
        if self.engine is None:
            raise ValidationError("Сначала подключитесь к WB.")
        return self.engine

    def _require_workflow(self) -> ReplyWorkflow:
        self._require_engine()
        return self.workflow
