from __future__ import annotations

ELLIPSIS = "…"


def truncate_chars(text: str, max_chars: int) -> str:
    """Clamp ``text`` to ``max_chars`` characters, marking truncation with an ellipsis."""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    if max_chars == 1:
        return ELLIPSIS
    return f"{text[: max_chars - 1]}{ELLIPSIS}"


def preview(text: str, limit: int = 400) -> str:
    normalized = (text or "").strip()
    if len(normalized) <= limit:
        return normalized
    return f"{normalized[:limit]}{ELLIPSIS}"
