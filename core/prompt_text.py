from __future__ import annotations


def merge_prefix(prefix: str | None, text: str | None) -> str | None:
    """Prepend an always-included ``prefix`` to user supplied prompt ``text``.

    Composable prompts are split on ``" AND "``; each segment gets the prefix
    so it applies to every sub-prompt.
    """
    prefix = (prefix or "").strip() or None
    text = (text or "").strip() or None
    if prefix is None:
        return text
    if text is None:
        return prefix
    return f"{prefix}, {text.replace(' AND ', f' AND {prefix}, ')}"


def merge_prefixes(prefixes: list[str | None], text: str | None) -> str | None:
    """Apply several prefixes, the first one ending up outermost."""
    merged = text
    for prefix in reversed(prefixes):
        merged = merge_prefix(prefix, merged)
    return merged
