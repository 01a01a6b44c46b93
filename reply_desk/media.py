from __future__ import annotations

from typing import Iterable
from urllib.parse import quote

PLACEHOLDER_IMAGE = "data:image/svg+xml;charset=utf-8," + quote(
    '<svg xmlns="http://www.w3.org/2000/svg" width="96" height="96">'
    '<rect width="100%" height="100%" fill="#f0f0f0"/>'
    '<text x="50%" y="50%" font-size="10" text-anchor="middle" fill="#999">'
    "Недоступно</text></svg>"
)


def normalize_url(url: str) -> str:
    url = (url or "").strip()
    if url.startswith("//"):
        return f"https:{url}"
    return url


def candidate_urls(url: str, proxies: Iterable[str]) -> list[str]:
    """Original URL first, then each proxy template with ``{url}`` filled in."""
    url = normalize_url(url)
    if not url or url.startswith("data:"):
        return [url] if url else []
    candidates = [url]
    for template in proxies:
        proxied = template.replace("{url}", quote(url, safe=""))
        if proxied not in candidates:
            candidates.append(proxied)
    return candidates


def image_sources(url: str, proxies: Iterable[str]) -> dict[str, object]:
    candidates = candidate_urls(url, proxies)
    if not candidates:
        return {"src": PLACEHOLDER_IMAGE, "fallbacks": [], "placeholder": PLACEHOLDER_IMAGE}
    return {
        "src": candidates[0],
        "fallbacks": candidates[1:],
        "placeholder": PLACEHOLDER_IMAGE,
    }
