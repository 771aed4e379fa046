"""Cheap keyword heuristics for tagging a user utterance before storing it.

No LLM calls: these run on every cache miss.
"""

import re

MIN_MEANINGFUL_LENGTH = 10

_WORD = re.compile(r"[a-z0-9']+")

# topic -> trigger phrases (whole words or phrases)
TOPIC_TRIGGERS: dict[str, tuple[str, ...]] = {
    "seo": ("seo", "search engine"),
    "link_building": ("link building", "backlink", "backlinks"),
    "domain_authority": ("domain authority", "da", "dr"),
    "publishers": ("publisher", "publishers", "site", "sites"),
    "cart": ("cart", "checkout"),
    "pricing": ("price", "prices", "pricing", "cost", "costs", "budget"),
    "search": ("filter", "search"),
    "recommendations": ("recommend", "recommendation", "suggest"),
}

POSITIVE_WORDS = {"good", "great", "excellent", "amazing", "love", "perfect", "awesome"}
NEGATIVE_WORDS = {"bad", "terrible", "awful", "hate", "problem", "issue", "wrong", "broken"}
ACTION_WORDS = {"buy", "purchase", "order", "help", "problem", "issue", "recommend"}

_FIRST_PERSON = re.compile(r"^\s*(i|i'm|i am|i've|my|we|we're|our)\b", re.IGNORECASE)
_FACT_MARKERS = re.compile(
    r"\b(my name is|i work|i live|i drive|i own|i use|i prefer|i like|i have|i am|i'm|my \w+ is)\b",
    re.IGNORECASE,
)
_FILLER = {"hi", "hello", "hey", "thanks", "thank you", "ok", "okay", "yes", "no", "sure", "cool"}


def _words(text: str) -> list[str]:
    return _WORD.findall(text.lower())


def _has_phrase(text: str, words: list[str], phrase: str) -> bool:
    if " " in phrase:
        return phrase in text
    return phrase in words


def is_meaningful(message: str) -> bool:
    """True when an utterance is worth remembering (not filler or too short)."""
    text = (message or "").strip()
    if len(text) < MIN_MEANINGFUL_LENGTH:
        return False
    return text.lower().strip(" !.?") not in _FILLER


def classify_content_type(message: str) -> str:
    """``user_fact`` for first-person statements about the user, else ``conversation``."""
    text = (message or "").strip()
    if text.endswith("?"):
        return "conversation"
    if _FACT_MARKERS.search(text) or _FIRST_PERSON.search(text):
        return "user_fact"
    return "conversation"


def extract_topics(message: str, response: str = "") -> list[str]:
    """Topic labels triggered by the message and answer."""
    text = f"{message} {response}".lower()
    words = _words(text)
    return [
        topic
        for topic, triggers in TOPIC_TRIGGERS.items()
        if any(_has_phrase(text, words, t) for t in triggers)
    ]


def extract_sentiment(message: str) -> str:
    words = set(_words(message))
    positive = len(words & POSITIVE_WORDS)
    negative = len(words & NEGATIVE_WORDS)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def estimate_importance(message: str, response: str, related_count: int = 0) -> float:
    """
    Importance in [0.5, 1.0].

    Longer exchanges, questions, action words and topics the user has raised
    before all push it up.
    """
    importance = 0.5
    if len(message) > 100:
        importance += 0.1
    if len(message) > 200:
        importance += 0.1
    if len(response) > 200:
        importance += 0.1
    if len(response) > 500:
        importance += 0.1
    if related_count > 0:
        importance += 0.2

    words = set(_words(message))
    if "?" in message or words & {"how", "what"}:
        importance += 0.1
    if words & ACTION_WORDS:
        importance += 0.1

    return round(min(importance, 1.0), 2)
