"""Verb-pattern relation extraction from user utterances."""

from __future__ import annotations

import re

from hybridmem.memory.extraction import clean_phrase

_SUBJECT = r"(?P<s>[a-z][a-z0-9' ]{0,40}?)"
_OBJECT = r"(?P<o>[^,]{1,60})"

# (predicate, verb alternation) in match priority order.
_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (predicate, re.compile(rf"^{_SUBJECT}\s+(?:{verbs})\s+{_OBJECT}$", re.IGNORECASE))
    for predicate, verbs in (
        ("works_at", r"works?\s+(?:at|for)"),
        ("lives_in", r"lives?\s+in"),
        ("is_a", r"(?:is|am)\s+an?"),
        ("wants", r"wants?|would\s+like"),
        ("loves", r"loves?"),
        ("likes", r"likes?|enjoys?"),
        ("hates", r"hates?|dislikes?|detests?"),
        ("knows", r"knows?"),
        ("has", r"has|have"),
    )
]

PREDICATES = tuple(predicate for predicate, _ in _PATTERNS)

_NEGATED_SUBJECT_RE = re.compile(
    r"\b(?:not|never|don'?t|doesn'?t|do|does|didn'?t|no\s+longer)$",
    re.IGNORECASE,
)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?;\n]+")
_QUESTION_WORDS = frozenset({
    "what", "who", "why", "how", "where", "when", "which",
    "do", "does", "did", "can", "could", "would", "is", "are",
})


def extract_relations(text: str, *, max_items: int = 8) -> list[tuple[str, str, str]]:
    """Return up to *max_items* ``(subject, predicate, object)`` tuples.

    One relation per sentence, first matching predicate wins.  Negated
    statements are skipped.
    """
    found: list[tuple[str, str, str]] = []
    seen: set[tuple[str, str, str]] = set()
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        if len(found) >= max_items:
            break
        sentence = sentence.strip()
        if not sentence or sentence.split()[0].lower() in _QUESTION_WORDS:
            continue
        for predicate, pattern in _PATTERNS:
            match = pattern.match(sentence)
            if match is None:
                continue
            subject = match.group("s").strip()
            if _NEGATED_SUBJECT_RE.search(subject):
                break
            obj = clean_phrase(match.group("o"))
            if predicate == "wants" and obj.lower().startswith("to "):
                obj = obj[3:].strip()
            if subject and obj:
                triple = (subject, predicate, obj)
                if triple not in seen:
                    seen.add(triple)
                    found.append(triple)
            break
    return found
