"""Poll command parsing and content filtering.

Blocked-term matching is per word: each word is lowercased, leetspeak digits
and symbols are mapped back to letters and everything non-alphanumeric is
dropped before the lookup. Matching whole words only keeps innocent words
that contain a blocked term ("class", "glass") from tripping the filter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .config import PollsConfig


BLOCKED_TERMS = frozenset({
    # Strong profanity
    "fuck", "fucking", "fucker", "fucked", "fck", "fuk", "fvck", "phuck",
    "cunt", "cnt",
    # Slurs
    "nigger", "nigga", "niggas", "faggot", "fag", "fags", "retard", "retarded",
    "tranny", "kike", "spic", "chink", "gook", "coon", "wetback",
    # Sexual violence
    "rape", "rapist", "raping", "pedo", "pedophile",
})

LEET_MAP = {
    "0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "8": "b",
    "@": "a", "€": "e", "$": "s", "+": "t",
}

_LEET_TABLE = str.maketrans(LEET_MAP)
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_DISPLAY_STRIP = re.compile(r"[^\w\s.,!?'-]")
_WHITESPACE = re.compile(r"\s+")

YES_ALIASES = frozenset({"yes", "y"})
NO_ALIASES = frozenset({"no", "n"})


def normalize_term(word: str) -> str:
    """Lowercase, undo leetspeak, keep only a-z0-9."""
    return _NON_ALNUM.sub("", word.lower().translate(_LEET_TABLE))


def contains_blocked(text: str, extra_terms: Iterable[str] = ()) -> bool:
    if not text:
        return False
    blocked = BLOCKED_TERMS | {normalize_term(t) for t in extra_terms}
    for word in text.split():
        norm = normalize_term(word)
        if len(norm) >= 2 and norm in blocked:
            return True
    return False


def sanitize_label(text: str) -> str:
    """Strip characters outside the display allow-list and collapse whitespace."""
    return _WHITESPACE.sub(" ", _DISPLAY_STRIP.sub("", text)).strip()


# ═══════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════


@dataclass
class ParsedPoll:
    question: str
    options: list[str] = field(default_factory=list)


def parse_poll_args(args: str, default_question: str | None = None) -> ParsedPoll | None:
    """Split ``Question? Opt1, Opt2`` into its parts.

    Everything up to and including the first ``?`` is the question; the
    comma-separated text after it are the options. A question without options
    becomes a Yes/No poll. With ``default_question`` (``!rank``), text without
    a ``?`` is read as the option list alone.
    """
    text = args.strip()
    if not text:
        return None

    q_mark = text.find("?")
    if q_mark >= 0:
        question, rest = text[: q_mark + 1].strip(), text[q_mark + 1 :].strip()
    elif default_question is not None:
        question, rest = default_question, text
    else:
        question, rest = text, ""

    if not question or question == "?":
        return None
    if not rest:
        return ParsedPoll(question=question, options=["Yes", "No"])
    options = [part.strip() for part in rest.split(",") if part.strip()]
    if not options:
        return None
    return ParsedPoll(question=question, options=options)


def validate_poll(poll: ParsedPoll, cfg: PollsConfig) -> str | None:
    """Sanitize ``poll`` in place. Returns a rejection message, or None if it is fine."""
    if contains_blocked(poll.question, cfg.blocked_words) or any(
        contains_blocked(opt, cfg.blocked_words) for opt in poll.options
    ):
        return "Poll rejected: question or options contain inappropriate content."

    poll.question = sanitize_label(poll.question)
    poll.options = [sanitize_label(opt) for opt in poll.options]

    if not poll.question:
        return "Usage: !poll Question? Option1, Option2"
    if len(poll.question) > cfg.max_question_length:
        return f"Poll question is too long (max {cfg.max_question_length} characters)."
    if not cfg.min_options <= len(poll.options) <= cfg.max_options:
        return f"Polls need {cfg.min_options}-{cfg.max_options} options."
    if any(not opt for opt in poll.options):
        return "Poll options need letters or numbers."
    if any(len(opt) > cfg.max_option_length for opt in poll.options):
        return f"Poll options must be {cfg.max_option_length} characters or fewer."
    if len({opt.lower() for opt in poll.options}) != len(poll.options):
        return "Poll options must all be different."
    return None


def match_vote(text: str, labels: list[str]) -> int | None:
    """Map a chat message to an option index, or None if it is not a vote.

    Exact case-insensitive label match, with a leading ``!`` ignored. Yes/No
    polls also accept ``y`` and ``n``.
    """
    raw = text.strip().lower()
    clean = raw[1:].strip() if raw.startswith("!") else raw
    if not clean:
        return None

    lowered = [label.lower() for label in labels]
    if len(lowered) == 2 and set(lowered) == {"yes", "no"}:
        if clean in YES_ALIASES:
            return lowered.index("yes")
        if clean in NO_ALIASES:
            return lowered.index("no")

    for index, label in enumerate(lowered):
        if label == clean:
            return index
    return None


def format_vote_hint(labels: list[str]) -> str:
    """``'a' or 'b'`` for two options, ``'a', 'b', 'c'`` for more."""
    quoted = [f"'{label.lower()}'" for label in labels]
    if len(quoted) == 2:
        return f"{quoted[0]} or {quoted[1]}"
    return ", ".join(quoted)
