from __future__ import annotations

import logging

from reply_desk.marketplaces.base import ApiResult, FeedbackItem

logger = logging.getLogger(__name__)

SYSTEM_RULES = """Правила ответов:
1. Будь вежливым и профессиональным
2. Благодари за отзыв
3. Если отзыв негативный - извинись и предложи решение
4. Если отзыв позитивный - поблагодари и пригласи снова
5. Ответ должен быть от 50 до 300 символов
6. Обращайся к покупателю по имени, если оно указано
7. Если к отзыву приложены фото или видео - отметь это"""


def build_system_prompt(instructions: str = "") -> str:
    lines = ["Ты - помощник для ответов на отзывы покупателей на маркетплейсе Wildberries."]
    instructions = (instructions or "").strip()
    if instructions:
        lines.append(f"Особые инструкции: {instructions}")
    lines.append("")
    lines.append(SYSTEM_RULES)
    return "\n".join(lines)


def _media_note(item: FeedbackItem) -> str:
    parts = []
    if item.photos:
        parts.append(f"фото ({len(item.photos)})")
    if item.video is not None:
        parts.append("видео")
    if not parts:
        return "Медиа: нет"
    return "Медиа: покупатель приложил " + " и ".join(parts)


def build_user_prompt(item: FeedbackItem) -> str:
    lines = [
        f"Отзыв от {item.user_name or 'покупателя'}:",
        f"Товар: {item.product_name or 'Неизвестный товар'}",
        f"Оценка: {item.rating}/5",
        f"Текст: {item.text}",
    ]
    if item.pros:
        lines.append(f"Достоинства: {item.pros}")
    if item.cons:
        lines.append(f"Недостатки: {item.cons}")
    lines.append(_media_note(item))
    lines.append("")
    lines.append("Напиши ответ на этот отзыв.")
    return "\n".join(lines)


class ReplyGenerator:
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 150,
        timeout: int = 30,
    ) -> None:
        try:
            from openai import OpenAI
        except Exception as exc:  # pragma: no cover - runtime dependency
            raise RuntimeError("OpenAI SDK is not installed. Add 'openai' to dependencies.") from exc

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def build_messages(self, item: FeedbackItem, instructions: str = "") -> list[dict[str, str]]:
        return [
            {"role": "system", "content": build_system_prompt(instructions)},
            {"role": "user", "content": build_user_prompt(item)},
        ]

    def generate_reply(self, item: FeedbackItem, instructions: str = "") -> ApiResult[str]:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(item, instructions),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            content = response.choices[0].message.content
        except Exception as exc:
            logger.warning("Reply generation failed for feedback %s: %s", item.id, exc)
            return ApiResult.failure(f"Ошибка генерации ответа: {exc}")
        return ApiResult.success(content or "")
