"""Keyword extraction for memories created from chat messages."""

import re
from collections import Counter

_STOP_WORDS = frozenset(
    """
    a an the and or but for to of in on at by with is are am was were be been
    being have has had do does did my your our their his her its that this
    these those what which who when where why how can could will would should
    may might i you he she it we they me him us them myself yourself
    """.split()
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

_HOBBY_PATTERNS = [
    re.compile(r"my hobbies? (?:are?|include)?\s*([^.!?]+)"),
    re.compile(r"i (?:like|enjoy|love)\s+([^.!?]+)"),
    re.compile(r"i'm (?:into|interested in)\s+([^.!?]+)"),
]

_PREFERENCE_PATTERNS = [
    re.compile(r"i prefer ([^.!?]+)"),
    re.compile(r"my favorite ([^.!?]+)"),
    re.compile(r"i usually ([^.!?]+)"),
]

_LIST_SPLIT_RE = re.compile(r"[,&]|\s+and\s+")


def extract_keywords(text: str, limit: int = 6) -> list[str]:
    """Most frequent content words of *text*.

    Stop words and words of two characters or fewer are ignored; ties
    keep first-appearance order.
    """
    words = [
        w
        for w in _NON_ALNUM_RE.sub(" ", text.lower()).split()
        if len(w) > 2 and w not in _STOP_WORDS
    ]
    return [word for word, _ in Counter(words).most_common(limit)]


def extract_personal_keywords(text: str, limit: int = 8) -> list[str]:
    """Hobbies and preferences stated in first-person sentences."""
    lower = text.lower()
    found: list[str] = []

    for pattern in _HOBBY_PATTERNS:
        for match in pattern.finditer(lower):
            found.extend(
                part.strip()
                for part in _LIST_SPLIT_RE.split(match.group(1))
                if len(part.strip()) > 2
            )

    for pattern in _PREFERENCE_PATTERNS:
        for match in pattern.finditer(lower):
            found.append(match.group(1).strip())

    return list(dict.fromkeys(found))[:limit]
