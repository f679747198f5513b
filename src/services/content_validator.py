"""Content policy checks for generated and edited submission text.

``validate`` never raises for string input. Every problem is reported in the
returned ``ValidationOutcome``: hard violations reject the text, warnings are
surfaced to operators only.

The sanitizer keeps line structure intact. Collapsing *all* whitespace (the
old behaviour) merged every paragraph of a submission into a single block, so
only horizontal whitespace is collapsed here.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable

from schemas.generation import (
    ValidationConstraints,
    ValidationOutcome,
    ValidationStatus,
    Violation,
)


logger = logging.getLogger(__name__)

_ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
_HSPACE_RE = re.compile("[ \t\f\v\u00a0\u2007\u202f]+")

_EMOJI_RE = re.compile(
    "["
    "\U0001f000-\U0001faff"  # pictographs, emoticons, transport, symbols
    "\u2600-\u27bf"  # misc symbols and dingbats
    "\u2b50\u2b55\u2b1b\u2b1c"
    "\u231a\u231b\u23e9-\u23fa"
    "]"
)
_EM_DASH = "\u2014"

_BANNED_PHRASES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("AI self-reference", re.compile(r"\bas an ai\b", re.I)),
    ("rhetorical 'it's not just'", re.compile(r"\bit['\u2019]s not just\b", re.I)),
    ("refusal phrasing 'I cannot'", re.compile(r"\bi cannot\b", re.I)),
    ("refusal phrasing 'I'm unable'", re.compile(r"\bi['\u2019]m unable\b", re.I)),
    ("rhetorical 'in today's world'", re.compile(r"\bin today['\u2019]s world\b", re.I)),
)

# Claims of outside research the submitter never supplied
_FABRICATED_RESEARCH: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bstudies\s+(?:have\s+)?(?:show|shown|suggest|indicate|found|prove)n?\b", re.I),
    re.compile(r"\bresearch\s+(?:has\s+)?(?:shows?|shown|suggests?|indicates?|found)\b", re.I),
    re.compile(r"\bexperts\s+(?:suggest|say|agree|believe|warn|recommend)\b", re.I),
    re.compile(r"\baccording\s+to\s+(?:experts|studies|research|scientists)\b", re.I),
    re.compile(r"\bscientists\s+(?:say|agree|have\s+found|warn)\b", re.I),
)

_URL_RE = re.compile(r"(?:https?://|www\.)[^\s<>\"'()\[\]]+", re.I)
_MD_LINK_RE = re.compile(r"\[[^\]]+\]\(([^)\s]+)\)")
_URL_TRAILING = ".,;:!?"

_UNITS = (
    "km²|km2|m³|m3|m²|m2|hectares|hectare|ha|kilometres|kilometers|km|"
    "metres|meters|metre|meter|mm|cm|m|storeys|storey|stories|dwellings|"
    "units|tonnes|kg|litres|L|vehicles|car parks|%"
)
_MEASUREMENT_RE = re.compile(
    r"(?<![\w.,])(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?[ \u00a0]?(?:" + _UNITS + r")(?![A-Za-z0-9])"
)


def sanitize(text: str) -> str:
    """Normalise whitespace and entities without touching line breaks.

    Idempotent: ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    out = text
    while True:
        decoded = html.unescape(_ZERO_WIDTH_RE.sub("", out))
        if decoded == out:
            break
        out = decoded

    out = out.replace("\r\n", "\n").replace("\r", "\n")
    out = _HSPACE_RE.sub(" ", out)

    lines: list[str] = []
    for raw in out.split("\n"):
        line = raw.strip(" ")
        if not line and (not lines or not lines[-1]):
            # at most one blank line in a row, none at the start
            continue
        lines.append(line)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def count_words(text: str) -> int:
    return len(text.split())


def _normalize_link(link: str) -> str:
    return link.rstrip(_URL_TRAILING).rstrip("/").lower()


def extract_links(text: str) -> list[str]:
    """Return every hyperlink-like token, in order of appearance."""
    found: list[str] = []
    for m in _URL_RE.finditer(text):
        found.append(m.group(0).rstrip(_URL_TRAILING))
    for m in _MD_LINK_RE.finditer(text):
        target = m.group(1).rstrip(_URL_TRAILING)
        if target not in found:
            found.append(target)
    return found


def extract_measurements(text: str) -> list[str]:
    """Numeric measurements with units, e.g. ``12,600 m³`` or ``50 metres``."""
    seen: list[str] = []
    for m in _MEASUREMENT_RE.finditer(text):
        token = _HSPACE_RE.sub(" ", m.group(0))
        if token not in seen:
            seen.append(token)
    return seen


def _check_forbidden(text: str, extra_phrases: Iterable[str]) -> list[Violation]:
    violations: list[Violation] = []
    emoji = _EMOJI_RE.search(text)
    if emoji:
        violations.append(
            Violation(rule="forbidden_pattern", detail=f"Contains an emoji ({emoji.group(0)!r})")
        )
    if _EM_DASH in text:
        violations.append(Violation(rule="forbidden_pattern", detail="Contains an em dash"))
    for label, rx in _BANNED_PHRASES:
        if rx.search(text):
            violations.append(
                Violation(rule="forbidden_pattern", detail=f"Banned phrasing: {label}")
            )
    for rx in _FABRICATED_RESEARCH:
        m = rx.search(text)
        if m:
            violations.append(
                Violation(
                    rule="forbidden_pattern",
                    detail=f"Unsupported research claim: '{m.group(0)}'",
                )
            )
    low = text.lower()
    for phrase in extra_phrases:
        p = phrase.strip().lower()
        if p and p in low:
            violations.append(
                Violation(rule="forbidden_pattern", detail=f"Banned phrasing: '{phrase}'")
            )
    return violations


def _check_links(text: str, allowed: Iterable[str]) -> list[Violation]:
    allow = {_normalize_link(a) for a in allowed}
    return [
        Violation(rule="link_allow_list", detail=f"Link not in allow-list: {link}")
        for link in extract_links(text)
        if _normalize_link(link) not in allow
    ]


def _check_preservation(text: str, sources: Iterable[str]) -> list[Violation]:
    missing: list[str] = []
    for source in sources:
        for token in extract_measurements(sanitize(source)):
            if token not in text and token not in missing:
                missing.append(token)
    return [
        Violation(rule="data_preservation", detail=f"Measurement not reproduced: '{token}'")
        for token in missing
    ]


def validate(text: str, constraints: ValidationConstraints) -> ValidationOutcome:
    """Sanitize ``text`` and check it against every content rule."""
    cleaned = sanitize(text)
    word_count = count_words(cleaned)

    violations: list[Violation] = []
    warnings: list[Violation] = []

    if word_count > constraints.word_limit:
        violations.append(
            Violation(
                rule="word_limit",
                detail=f"{word_count} words exceeds the limit of {constraints.word_limit}",
            )
        )
    elif word_count < constraints.min_utilization * constraints.word_limit:
        warnings.append(
            Violation(
                rule="min_utilization",
                detail=(
                    f"{word_count} words is below {constraints.min_utilization:.0%} "
                    f"of the {constraints.word_limit} word limit"
                ),
            )
        )

    violations.extend(_check_forbidden(cleaned, constraints.extra_banned_phrases))
    violations.extend(_check_links(cleaned, constraints.allowed_links))
    warnings.extend(_check_preservation(cleaned, constraints.source_texts))

    if violations:
        logger.info(
            "Content validation rejected text: %s",
            ", ".join(sorted({v.rule for v in violations})),
        )
        return ValidationOutcome(
            status=ValidationStatus.REJECTED,
            sanitized_text="",
            violations=tuple(violations),
            warnings=tuple(warnings),
            word_count=word_count,
        )

    if warnings:
        logger.warning(
            "Content validation passed with warnings: %s",
            "; ".join(w.detail for w in warnings),
        )
    return ValidationOutcome(
        status=ValidationStatus.PASS,
        sanitized_text=cleaned,
        violations=(),
        warnings=tuple(warnings),
        word_count=word_count,
    )
