"""Text normalization shared by the knowledge base loader and the matcher.

Everything lexical in the concierge works on the same normalized form:
lowercase, non-alphanumeric characters replaced by spaces, whitespace
collapsed. Multi-word lookups therefore do not depend on punctuation.
"""

import re

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# Function words, question words and navigation filler. Never identifying.
STOPWORDS = frozenset({
    "a", "an", "the", "of", "and", "or", "to", "from", "in", "on", "at", "for",
    "by", "with", "into", "onto", "as", "is", "are", "was", "be", "been", "am",
    "it", "its", "this", "that", "these", "those", "there", "here",
    "i", "me", "my", "we", "our", "you", "your", "he", "she", "they", "them",
    "where", "what", "which", "who", "whom", "whose", "when", "why", "how",
    "do", "does", "did", "can", "could", "should", "would", "will", "shall",
    "may", "might", "must", "need", "want", "please", "tell", "show", "find",
    "get", "go", "going", "take", "reach", "locate", "located", "location",
    "way", "route", "directions", "direction", "navigate", "guide", "between",
    "near", "next", "behind", "beside", "opposite", "inside", "outside",
    "floor", "ground", "first", "second", "third", "room", "window", "level",
    "such", "some", "any", "all", "also", "about", "up", "out", "if", "so",
    "not", "no", "yes", "hi", "hello", "thanks", "thank",
})

# Category words that appear in many names. They only count as weak evidence.
GENERIC_TOKENS = frozenset({
    "building", "block", "office", "offices", "section", "hall", "halls",
    "center", "centre", "central", "main", "campus", "student", "students",
    "complex", "area", "unit", "desk", "counter", "house", "new", "old",
    "north", "south", "east", "west", "university", "college",
})


def normalize_query(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    if not text:
        return ""
    return _NON_ALNUM_RE.sub(" ", text.lower()).strip()


def tokenize(text: str) -> list[str]:
    """Return normalized tokens in query order."""
    normalized = normalize_query(text)
    return normalized.split() if normalized else []


def content_tokens(text: str) -> list[str]:
    """Tokens of ``text`` without stopwords, order preserved."""
    return [t for t in tokenize(text) if t not in STOPWORDS]


def contains_phrase(normalized_text: str, phrase: str) -> bool:
    """Whole-token phrase containment on already normalized text."""
    if not phrase:
        return False
    return f" {phrase} " in f" {normalized_text} "
