"""Tokenization and light extractive text helpers.

Pure Python, no external dependencies. The same tokenizer feeds query
scoring, summary extraction and tag extraction so that a tag produced at
write time is always matchable by a query at read time.
"""
from __future__ import annotations

import re
from collections import Counter

# Common English stopwords to filter out
STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "could",
    "did", "do", "does", "for", "from", "had", "has", "have", "he", "how",
    "in", "is", "it", "its", "of", "on", "or", "should", "that", "the",
    "they", "this", "to", "was", "were", "what", "when", "where", "which",
    "who", "why", "will", "with", "would",
})

_TOKEN_RE = re.compile(r"\w+")
_WHITESPACE_RE = re.compile(r"\s+")


def tokenize(text: str) -> list[str]:
    """Lowercase, split on non-word characters, drop stopwords and 1-char tokens."""
    tokens = _TOKEN_RE.findall(text.lower())
    return [t for t in tokens if t not in STOPWORDS and len(t) > 1]


def key_terms(text: str, *, limit: int = 20) -> list[str]:
    """Return up to *limit* content terms (3+ chars) in order of appearance."""
    return [t for t in tokenize(text) if len(t) > 2][:limit]


def normalize_summary(summary: str) -> str:
    """Canonical form used to spot near-duplicate summaries."""
    return _WHITESPACE_RE.sub(" ", summary.strip().lower())


def summarize(input_text: str, output_text: str, *, max_chars: int = 200) -> str:
    """Pick the output line sharing the most key terms with the input.

    Falls back to the first non-blank line, then to the head of the raw
    output. Lines longer than *max_chars* are cut and marked with ``...``.
    """
    input_terms = set(key_terms(input_text))
    lines = [line.strip() for line in output_text.splitlines() if line.strip()]
    best = lines[0] if lines else output_text.strip()[:100]
    best_score = 0
    for line in lines:
        score = len(input_terms & set(key_terms(line)))
        if score > best_score:
            best, best_score = line, score
    if not best:
        best = input_text.strip()
    if len(best) > max_chars:
        return best[:max_chars] + "..."
    return best


def extract_tags(input_text: str, output_text: str, *, max_tags: int = 5) -> list[str]:
    """Most frequent key terms across input and output, ties by first use."""
    counts = Counter(key_terms(f"{input_text} {output_text}", limit=200))
    return [term for term, _ in counts.most_common(max_tags)]
