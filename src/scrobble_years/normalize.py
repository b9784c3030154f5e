from __future__ import annotations

import re

# Applied in order; "featuring" and "ft." must be rewritten before anything
# shorter could match inside them.
ARTIST_SEPARATOR_REWRITES: tuple[tuple[str, str], ...] = (
    (", ", " & "),
    (" ft. ", " feat. "),
    (" ft ", " feat. "),
    (" featuring ", " feat. "),
    (" x ", " & "),
)

# Keywords marking a " - <suffix>" as a version qualifier.
TRACK_SUFFIX_KEYWORDS: tuple[str, ...] = (
    "remaster",
    "remix",
    "mix",
    "version",
    "anniversary",
    "edit",
    "recording",
    "take",
)

# Keywords marking a "(...)" segment as a version qualifier.
PAREN_KEYWORDS: tuple[str, ...] = (
    "remaster",
    "remix",
    "mix",
    "version",
    "edit",
    "feat.",
    "feat",
    "ft.",
    "ft",
    "featuring",
    "with",
    "live",
    "acoustic",
    "instrumental",
)

# Priority order, not position order.
CREDIT_SEPARATORS: tuple[str, ...] = (" & ", " feat. ", " featuring ", " x ", ",")

SUFFIX_DELIMITER = " - "

_PAREN_SEGMENT = re.compile(r"\(([^)]*)\)")
_MULTI_SPACE = re.compile(r" {2,}")


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def normalize_artist(
    name: str,
    rewrites: tuple[tuple[str, str], ...] = ARTIST_SEPARATOR_REWRITES,
) -> str:
    """
    Canonicalize collaboration separators in an artist credit.

    Every rewrite is applied, and the whole set is re-applied until the
    string stops changing, so the result is a fixed point:
    ``normalize_artist(normalize_artist(s)) == normalize_artist(s)``.
    """
    normalized = name.strip()
    while True:
        rewritten = normalized
        for pattern, replacement in rewrites:
            rewritten = rewritten.replace(pattern, replacement)
        rewritten = rewritten.strip()
        if rewritten == normalized:
            return normalized
        normalized = rewritten


def normalize_track(
    name: str,
    suffix_keywords: tuple[str, ...] = TRACK_SUFFIX_KEYWORDS,
    paren_keywords: tuple[str, ...] = PAREN_KEYWORDS,
) -> str:
    """
    Strip version qualifiers that the catalog's canonical titles do not carry.

    "A Salty Dog - 2009 Remaster" -> "A Salty Dog"
    "Track Name (feat. Artist)"   -> "Track Name"
    "Track (Part 1)"              -> "Track (Part 1)"
    """
    title = name.strip()

    idx = title.find(SUFFIX_DELIMITER)
    if idx != -1:
        suffix = title[idx + len(SUFFIX_DELIMITER) :].lower()
        if _contains_any(suffix, suffix_keywords):
            title = title[:idx]

    def _strip_qualifier(match: re.Match[str]) -> str:
        if _contains_any(match.group(1).lower(), paren_keywords):
            return ""
        return match.group(0)

    title = _PAREN_SEGMENT.sub(_strip_qualifier, title)
    title = _MULTI_SPACE.sub(" ", title)
    return title.strip()


def first_credited_artist(
    name: str,
    separators: tuple[str, ...] = CREDIT_SEPARATORS,
) -> str:
    """Return the lead artist of a collaboration credit, or the input if solo."""
    for separator in separators:
        idx = name.find(separator)
        if idx != -1:
            return name[:idx].strip()
    return name


## Tests


def test_normalize_artist_comma():
    assert normalize_artist("DJ Seinfeld, Teira") == "DJ Seinfeld & Teira"


def test_normalize_artist_ft():
    assert normalize_artist("Sigma ft. Shakka") == "Sigma feat. Shakka"
    assert normalize_artist("Sigma ft Shakka") == "Sigma feat. Shakka"
    assert normalize_artist("Sigma featuring Shakka") == "Sigma feat. Shakka"


def test_normalize_artist_x():
    assert normalize_artist("Artist x Another") == "Artist & Another"


def test_normalize_artist_applies_all_rewrites():
    assert normalize_artist("A, B ft. C") == "A & B feat. C"


def test_normalize_artist_reaches_fixed_point():
    # A single replace pass leaves a second " ft " behind here
    first = normalize_artist("A ft ft B")
    assert first == "A feat. feat. B"
    assert normalize_artist(first) == first


def test_normalize_track_suffix():
    assert normalize_track("A Salty Dog - 2009 Remaster") == "A Salty Dog"
    assert normalize_track("Quest - Original Mix") == "Quest"


def test_normalize_track_keeps_plain_suffix():
    assert normalize_track("Song - Part Two") == "Song - Part Two"


def test_normalize_track_parens():
    assert normalize_track("Track Name (feat. Artist)") == "Track Name"
    assert normalize_track("Track (Part 1)") == "Track (Part 1)"


def test_normalize_track_mixed_parens():
    assert normalize_track("Song (Part 1) (Live at Venue)") == "Song (Part 1)"
    assert normalize_track("Song (Live) (Part 2)") == "Song (Part 2)"


def test_first_credited_artist():
    assert first_credited_artist("Artist A & Artist B") == "Artist A"
    assert first_credited_artist("Solo Artist") == "Solo Artist"
    assert first_credited_artist("First, Second") == "First"
