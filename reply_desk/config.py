import os
from dataclasses import dataclass


DEFAULT_IMAGE_PROXIES = (
    "https://corsproxy.io/?{url}",
    "https://api.allorigins.win/raw?url={url}",
)


def load_dotenv(path: str = ".env") -> None:
    if not os.path.exists(path):
        return
    with open(path, "r", encoding="utf-8") as f:
        for raw_line in f:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if key and key not in os.environ:
                os.environ[key] = value.strip()


@dataclass(frozen=True)
class Settings:
    wb_api_token: str | None
    wb_statistics_token: str | None
    openai_api_key: str | None
    openai_model: str
    openai_temperature: float
    openai_max_tokens: int
    feedback_take: int
    page_size: int
    ai_instructions: str
    image_proxies: tuple[str, ...]
    request_timeout_sec: int
    secret_key: str
    host: str
    port: int
    log_level: str


def _getenv_any(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value.strip()
    return None


def _parse_proxies(raw: str | None) -> tuple[str, ...]:
    if raw is None:
        return DEFAULT_IMAGE_PROXIES
    parts = [part.strip() for part in raw.split(",") if part.strip()]
    return tuple(part for part in parts if "{url}" in part)


def get_settings() -> Settings:
    load_dotenv()
    return Settings(
        wb_api_token=_getenv_any("WB_API_TOKEN", "WB_API_KEY", "VITE_WB"),
        wb_statistics_token=_getenv_any("WB_STATISTICS_TOKEN", "VITE_WB_STATISTICS"),
        openai_api_key=_getenv_any("OPENAI_API_KEY", "VITE_OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_temperature=float(os.getenv("OPENAI_TEMPERATURE", "0.7")),
        openai_max_tokens=int(os.getenv("OPENAI_MAX_TOKENS", "150")),
        feedback_take=int(os.getenv("FEEDBACK_TAKE", "100")),
        page_size=int(os.getenv("PAGE_SIZE", "10")),
        ai_instructions=os.getenv("AI_INSTRUCTIONS", ""),
        image_proxies=_parse_proxies(os.getenv("IMAGE_PROXIES")),
        request_timeout_sec=int(os.getenv("REQUEST_TIMEOUT_SEC", "30")),
        secret_key=os.getenv("DASHBOARD_SECRET_KEY", "dev-secret-key"),
        host=os.getenv("DASHBOARD_HOST", "127.0.0.1"),
        port=int(os.getenv("DASHBOARD_PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
