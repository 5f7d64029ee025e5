"""Pattern-based concept extraction and statement polarity.

Only ever applied to the user's own utterances.  Extraction is
best-effort: patterns miss plenty, but every candidate is a literal
restatement of what the user said.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from hybridmem.models.common import normalize_name
from hybridmem.models.concepts import ConceptCandidate
from hybridmem.models.concepts import ConceptCategory
from hybridmem.models.concepts import ConceptSource
from hybridmem.models.concepts import Polarity

# ---------------------------------------------------------------------------
# Polarity
# ---------------------------------------------------------------------------

POSITIVE_VERBS = frozenset({
    "love", "loves", "like", "likes", "enjoy", "enjoys",
    "prefer", "prefers", "adore", "adores",
})
NEGATIVE_VERBS = frozenset({
    "hate", "hates", "dislike", "dislikes", "detest", "detests",
    "loathe", "loathes",
})
_VERBS = "|".join(sorted(POSITIVE_VERBS | NEGATIVE_VERBS, key=len, reverse=True))
_NEGATION = r"(?:do\s+not|does\s+not|don'?t|doesn'?t|never|no\s+longer|not)"

_POLARITY_RE = re.compile(
    rf"^(?P<subject>.*?)\b(?P<neg>{_NEGATION}\s+)?(?P<verb>{_VERBS})\b\s*(?P<object>.*)$",
    re.IGNORECASE,
)
_TRAILING_RE = re.compile(r"[\s.!?,;:]+$")
_LEADING_ARTICLE_RE = re.compile(r"^(?:the|a|an|some)\s+", re.IGNORECASE)


@dataclass(frozen=True)
class Statement:
    """A statement reduced to its subject key and polarity."""

    key: str
    polarity: Polarity


def clean_phrase(text: str) -> str:
    text = _TRAILING_RE.sub("", text.strip())
    return _LEADING_ARTICLE_RE.sub("", text).strip()


def analyze(text: str) -> Statement:
    """Strip the sentiment verb (and negation) from *text*.

    ``"I love pizza"`` and ``"User doesn't like pizza"`` both reduce to
    key ``"pizza"``; statements without a sentiment verb are neutral and
    keyed by their normalized text.
    """
    match = _POLARITY_RE.match(text.strip())
    if match is None or not match.group("object").strip():
        return Statement(key=normalize_name(clean_phrase(text)), polarity=Polarity.neutral)
    verb = match.group("verb").lower()
    positive = verb in POSITIVE_VERBS
    if match.group("neg"):
        positive = not positive
    return Statement(
        key=normalize_name(clean_phrase(match.group("object"))),
        polarity=Polarity.positive if positive else Polarity.negative,
    )


def polarity_of(text: str) -> Polarity:
    return analyze(text).polarity


def is_contradiction(a: str, b: str) -> bool:
    """True for opposite-polarity statements about the same subject."""
    sa = analyze(a)
    sb = analyze(b)
    if not sa.key or sa.key != sb.key:
        return False
    return {sa.polarity, sb.polarity} == {Polarity.positive, Polarity.negative}


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

_SENTENCE_SPLIT_RE = re.compile(r"[.!?;\n]+")
_CLAUSE = r"(?P<x>[^,]{1,80}?)"

_SENTIMENT_RE = re.compile(
    rf"\bi\s+(?P<neg>{_NEGATION}\s+)?(?P<verb>{_VERBS})\s+{_CLAUSE}$",
    re.IGNORECASE,
)
_GOAL_RE = re.compile(
    rf"\bi(?:\s+(?:want|would\s+like|plan|hope|need)|'d\s+like)\s+to\s+{_CLAUSE}$",
    re.IGNORECASE,
)
_SKILL_RE = re.compile(rf"\bi\s+(?:can|know\s+how\s+to)\s+{_CLAUSE}$", re.IGNORECASE)
_RULE_RE = re.compile(rf"\b(?P<mode>always|never)\s+{_CLAUSE}$", re.IGNORECASE)
_ATTRIBUTE_RE = re.compile(
    r"\bmy\s+(?P<attr>[a-z][a-z' ]{0,40}?)\s+(?:is|are)\s+(?P<value>[^,]{1,80})$",
    re.IGNORECASE,
)
_DEFINITION_RE = re.compile(
    r"^(?P<x>[a-z][a-z0-9' -]{0,40}?)\s+(?:is|are)\s+(?P<y>(?:an?\s+|the\s+)?[^,]{1,80})$",
    re.IGNORECASE,
)
_NON_SUBJECTS = frozenset({
    "it", "this", "that", "there", "here", "he", "she", "they", "what",
    "who", "which", "where", "when", "why", "how", "i", "you", "we",
})


def _candidate(name: str, definition: str, category: ConceptCategory) -> ConceptCandidate | None:
    name = clean_phrase(name)
    definition = definition.strip()
    if not name or not definition:
        return None
    return ConceptCandidate(
        name=name,
        definition=definition,
        category=category,
        source=ConceptSource.learned_from_dialogue,
    )


def _from_sentence(sentence: str) -> ConceptCandidate | None:
    match = _SENTIMENT_RE.search(sentence)
    if match:
        verb = match.group("verb").lower()
        negated = bool(match.group("neg"))
        positive = (verb in POSITIVE_VERBS) != negated
        obj = clean_phrase(match.group("x"))
        if verb.startswith("prefer") and not negated:
            return _candidate(obj, f"User prefers {obj}", ConceptCategory.preference)
        phrase = "likes" if positive else "dislikes"
        if verb.rstrip("s") in ("love", "hate", "adore", "loathe", "detest") and not negated:
            phrase = verb if verb.endswith("s") else verb + "s"
        return _candidate(obj, f"User {phrase} {obj}", ConceptCategory.preference)

    match = _GOAL_RE.search(sentence)
    if match:
        goal = clean_phrase(match.group("x"))
        return _candidate(goal, f"User wants to {goal}", ConceptCategory.goal)

    match = _SKILL_RE.search(sentence)
    if match:
        skill = clean_phrase(match.group("x"))
        return _candidate(skill, f"User can {skill}", ConceptCategory.skill)

    match = _RULE_RE.search(sentence)
    if match:
        rule = f"{match.group('mode').lower()} {clean_phrase(match.group('x'))}"
        return _candidate(rule, sentence.strip(), ConceptCategory.rule)

    match = _ATTRIBUTE_RE.search(sentence)
    if match:
        attr = clean_phrase(match.group("attr"))
        value = clean_phrase(match.group("value"))
        return _candidate(
            f"user {attr}",
            f"User's {attr} is {value}",
            ConceptCategory.fact,
        )

    match = _DEFINITION_RE.match(sentence.strip())
    if match:
        subject = clean_phrase(match.group("x"))
        if subject.lower() in _NON_SUBJECTS:
            return None
        return _candidate(subject, sentence.strip(), ConceptCategory.fact)
    return None


def extract_concepts(
    text: str,
    *,
    max_items: int = 8,
    max_chars: int = 2000,
) -> list[ConceptCandidate]:
    """Return at most *max_items* candidates found in the first *max_chars*."""
    found: list[ConceptCandidate] = []
    seen: set[tuple[str, ConceptCategory]] = set()
    for sentence in _SENTENCE_SPLIT_RE.split(text[:max_chars]):
        if len(found) >= max_items:
            break
        sentence = sentence.strip()
        if not sentence:
            continue
        candidate = _from_sentence(sentence)
        if candidate is None:
            continue
        key = (normalize_name(candidate.name), candidate.category)
        if key in seen:
            continue
        seen.add(key)
        found.append(candidate)
    return found
