from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass


@dataclass(frozen=True)
class NormalizedQuery:
    """Matching form of an artist/title pair, used only for scoring."""

    artist: str
    title: str


class Normalizer:
    """
    Deterministic text normalizer for artist/album strings.

    Two distinct forms are produced:
    - normalize(): matching form (ASCII-folded, lower-cased) used for scoring
    - strip_for_query(): search form that keeps meaningful punctuation and
      non-Latin letters, used to build provider queries
    """

    # Letters that do not decompose into base + combining mark under NFD
    TRANSLITERATIONS = {
        "Æ": "AE",
        "æ": "ae",
        "Ø": "O",
        "ø": "o",
        "ß": "ss",
        "ẞ": "SS",
        "Œ": "OE",
        "œ": "oe",
        "Đ": "D",
        "đ": "d",
        "Ð": "D",
        "ð": "d",
        "Ł": "L",
        "ł": "l",
        "Þ": "TH",
        "þ": "th",
        "ı": "i",
    }

    TYPOGRAPHIC = {
        "‘": "'",
        "’": "'",
        "‚": "'",
        "′": "'",
        "“": '"',
        "”": '"',
        "„": '"',
        "″": '"',
        "‐": "-",
        "‑": "-",
        "‒": "-",
        "–": "-",
        "—": "-",
        "―": "-",
        "−": "-",
        "…": "...",
        " ": " ",
    }

    QUERY_DISALLOWED = re.compile(r"[^\w\s:'&.,()\-]|_")
    ASCII_SYMBOLS = frozenset("$+<=>^`|~")

    def __init__(self) -> None:
        self._translit_table = str.maketrans(self.TRANSLITERATIONS)
        self._typographic_table = str.maketrans(self.TYPOGRAPHIC)

    def normalize(self, text: str) -> str:
        """
        Matching form of a free-text string.

        Idempotent: normalize(normalize(s)) == normalize(s).
        """
        s = self.ascii_fold(text)
        s = self._strip_trailing_punctuation(s)
        s = self._collapse_whitespace(s)
        return s.lower()

    def normalize_query(self, artist: str, title: str) -> NormalizedQuery:
        return NormalizedQuery(artist=self.normalize(artist), title=self.normalize(title))

    def ascii_fold(self, text: str) -> str:
        """Transliterate and strip diacritics, preserving case and punctuation."""
        s = self._canonicalize_punctuation(text)
        s = self._transliterate(s)
        s = self._strip_diacritics(s)
        # Decomposition can expose letters such as æ (from ǽ)
        s = self._transliterate(s)
        return self._collapse_whitespace(s)

    def strip_for_query(self, text: str) -> str:
        """Drop characters outside letters, digits, whitespace and :'&.,()-."""
        s = unicodedata.normalize("NFC", text)
        s = self.QUERY_DISALLOWED.sub("", s)
        return self._collapse_whitespace(s)

    def _canonicalize_punctuation(self, s: str) -> str:
        """Replace typographic quotes, dashes and ellipsis with ASCII."""
        return s.translate(self._typographic_table)

    def _transliterate(self, s: str) -> str:
        return s.translate(self._translit_table)

    def _strip_diacritics(self, s: str) -> str:
        """Remove combining marks after NFD decomposition."""
        nfd = unicodedata.normalize("NFD", s)
        return "".join(c for c in nfd if unicodedata.category(c) != "Mn")

    def _strip_trailing_punctuation(self, s: str) -> str:
        end = len(s)
        while end > 0 and self._is_trailing_junk(s[end - 1]):
            end -= 1
        return s[:end]

    def _is_trailing_junk(self, c: str) -> bool:
        return c.isspace() or c in self.ASCII_SYMBOLS or unicodedata.category(c).startswith("P")

    def _collapse_whitespace(self, s: str) -> str:
        return re.sub(r"\s+", " ", s).strip()


_default = Normalizer()


def normalize(text: str) -> str:
    return _default.normalize(text)


def normalize_query(artist: str, title: str) -> NormalizedQuery:
    return _default.normalize_query(artist, title)


def strip_for_query(text: str) -> str:
    return _default.strip_for_query(text)


def ascii_fold(text: str) -> str:
    return _default.ascii_fold(text)


## Tests


def test_typographic_punctuation():
    assert normalize("Don’t Look Back…") == "don't look back"
    assert normalize("Rock – Roll") == "rock - roll"


def test_transliteration():
    assert normalize("Mø") == "mo"
    assert normalize("Ærøskøbing") == "aeroskobing"
    assert normalize("Straße") == "strasse"


def test_diacritics_stripping():
    assert normalize("Björk") == "bjork"
    assert normalize("Mötley Crüe") == normalize("Motley Crue")


def test_trailing_punctuation_and_whitespace():
    assert normalize("  Help!  ") == "help"
    assert normalize("Is This  It?!") == "is this it"


def test_strip_for_query_keeps_meaningful_punctuation():
    assert strip_for_query("AC/DC: Back in Black!") == "ACDC: Back in Black"
    assert strip_for_query("Sigur Rós — ( )") == "Sigur Rós ( )"
    assert strip_for_query("Guns N' Roses & Co.") == "Guns N' Roses & Co."


def test_ascii_fold_preserves_case():
    assert ascii_fold("Sigur Rós") == "Sigur Ros"
    assert ascii_fold("Mötley Crüe") == "Motley Crue"


def test_normalize_query():
    query = normalize_query("  Björk ", "Homogenic.")
    assert query == NormalizedQuery(artist="bjork", title="homogenic")


def test_idempotence():
    for text in ["Mötley Crüe", "The Beatles!", "...And Justice for All", "Æ  ß"]:
        once = normalize(text)
        assert normalize(once) == once
