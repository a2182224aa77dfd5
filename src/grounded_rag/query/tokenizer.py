"""Text preprocessing for keyword search and lexical similarity."""

from __future__ import annotations

import re

from grounded_rag.config.constants import STOPWORDS


def tokenize(text: str) -> list[str]:
    """Tokenize text: lowercase, strip punctuation, remove stopwords."""
    text = text.lower()
    text = re.sub(r"[^\w\s]", " ", text)
    tokens = text.split()
    return [t for t in tokens if t not in STOPWORDS and len(t) > 1]


def variants(token: str) -> list[str]:
    """Plural/singular variants of a token (crude English suffix rules)."""
    if len(token) <= 3 or token.isdigit():
        return []
    if token.endswith("ies"):
        return [token[:-3] + "y"]
    if token.endswith("sses") or token.endswith("shes") or token.endswith("ches"):
        return [token[:-2]]
    if token.endswith("ss") or token.endswith("us"):
        return [token + "es"]
    if token.endswith("s"):
        return [token[:-1]]
    if token.endswith("y") and token[-2] not in "aeiou":
        return [token[:-1] + "ies"]
    if token.endswith(("sh", "ch", "x", "z")):
        return [token + "es"]
    return [token + "s"]


def jaccard(a: str, b: str) -> float:
    """Token-set Jaccard similarity in [0, 1]."""
    sa, sb = set(tokenize(a)), set(tokenize(b))
    if not sa or not sb:
        return 0.0
    return len(sa & sb) / len(sa | sb)
