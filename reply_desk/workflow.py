from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from reply_desk.ai import ReplyGenerator
from reply_desk.engine import FeedbackEngine
from reply_desk.marketplaces.base import ApiResult, MarketplaceClient

logger = logging.getLogger(__name__)


class ReplyState(str, Enum):
    NO_DRAFT = "no_draft"
    GENERATING = "generating"
    DRAFT = "draft"
    SENDING = "sending"
    SENT = "sent"


class WorkflowError(RuntimeError):
    pass


@dataclass
class Draft:
    text: str
    editing: bool = False


class ReplyWorkflow:
    """Per-feedback reply lifecycle: generate, edit, send.

    Drafts live only in memory. ``generating`` and ``sending`` are tracked per
    feedback id, so work on one item never blocks another.
    """

    def __init__(
        self,
        engine: FeedbackEngine,
        source: MarketplaceClient,
        generator: ReplyGenerator,
        on_sent: Callable[[str], None] | None = None,
    ) -> None:
        self.engine = engine
        self.source = source
        self.generator = generator
        self.on_sent = on_sent
        self.drafts: dict[str, Draft] = {}
        self.generating: set[str] = set()
        self.sending: set[str] = set()
        self.sent: set[str] = set()
        self.last_error = ""

    def state(self, feedback_id: str) -> ReplyState:
        if feedback_id in self.sent:
            return ReplyState.SENT
        if feedback_id in self.sending:
            return ReplyState.SENDING
        if feedback_id in self.generating:
            return ReplyState.GENERATING
        if feedback_id in self.drafts:
            return ReplyState.DRAFT
        return ReplyState.NO_DRAFT

    def draft(self, feedback_id: str) -> Draft | None:
        return self.drafts.get(feedback_id)

    def generate(self, feedback_id: str, instructions: str = "") -> ApiResult[str]:
        item = self.engine.get(feedback_id)
        if item is None:
            raise WorkflowError(f"Отзыв {feedback_id} не найден.")
        if item.is_answered:
            raise WorkflowError("На этот отзыв уже есть ответ.")
        state = self.state(feedback_id)
        if state in (ReplyState.GENERATING, ReplyState.SENDING):
            raise WorkflowError("Ответ для этого отзыва уже обрабатывается.")
        self.sent.discard(feedback_id)
        self.generating.add(feedback_id)
        try:
            result = self.generator.generate_reply(item, instructions)
        finally:
            self.generating.discard(feedback_id)
        if result.ok:
            self.drafts[feedback_id] = Draft(text=result.data or "")
            logger.info("Generated reply for feedback %s", feedback_id)
        else:
            self.last_error = result.error_text
        return result

    def toggle_edit(self, feedback_id: str) -> bool:
        draft = self._require_draft(feedback_id)
        draft.editing = not draft.editing
        return draft.editing

    def update_text(self, feedback_id: str, text: str) -> None:
        draft = self._require_draft(feedback_id)
        if not draft.editing:
            raise WorkflowError("Черновик не в режиме редактирования.")
        draft.text = text

    def send(self, feedback_id: str) -> ApiResult[dict]:
        draft = self._require_draft(feedback_id)
        if feedback_id in self.sending:
            raise WorkflowError("Ответ уже отправляется.")
        text = draft.text.strip()
        if not text:
            raise WorkflowError("Нужно заполнить текст ответа.")
        self.sending.add(feedback_id)
        try:
            result = self.source.submit_reply(feedback_id, text)
        finally:
            self.sending.discard(feedback_id)
        if not result.ok:
            self.last_error = f"Ошибка отправки: {result.error_text}"
            return result
        self.engine.remove_item(feedback_id)
        self.drafts.pop(feedback_id, None)
        self.sent.add(feedback_id)
        logger.info("Reply sent for feedback %s", feedback_id)
        if self.on_sent is not None:
            self.on_sent(feedback_id)
        return result

    def discard(self, feedback_id: str) -> None:
        self.drafts.pop(feedback_id, None)

    def prune(self) -> int:
        loaded_ids = {item.id for item in self.engine.loaded}
        stale = [feedback_id for feedback_id in self.drafts if feedback_id not in loaded_ids]
        for feedback_id in stale:
            del self.drafts[feedback_id]
        self.sent.clear()
        return len(stale)

    def _require_draft(self, feedback_id: str) -> Draft:
        draft = self.drafts.get(feedback_id)
        if draft is None:
            raise WorkflowError("Для этого отзыва нет черновика.")
        return draft
