"""Canonical book ordering used by the package format.

Orders 1-39 are Old Testament, 40-66 New Testament (Protestant canon).
Book files in a package are named ``books/{order:02d}-{id}.json``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

OT_RANGE = range(1, 40)
NT_RANGE = range(40, 67)
CANON_SIZE = 66
STANDARD_OT_COUNT = 39
STANDARD_NT_COUNT = 27


@dataclass(frozen=True)
class CanonBook:
    """A book in canonical order."""

    order: int
    id: str
    name: str
    abbreviation: str

    @property
    def testament(self) -> str:
        return testament_for_order(self.order)


# (id, name, USFM abbreviation) in canonical order
_BOOKS = [
    ("genesis", "Genesis", "GEN"),
    ("exodus", "Exodus", "EXO"),
    ("leviticus", "Leviticus", "LEV"),
    ("numbers", "Numbers", "NUM"),
    ("deuteronomy", "Deuteronomy", "DEU"),
    ("joshua", "Joshua", "JOS"),
    ("judges", "Judges", "JDG"),
    ("ruth", "Ruth", "RUT"),
    ("1samuel", "1 Samuel", "1SA"),
    ("2samuel", "2 Samuel", "2SA"),
    ("1kings", "1 Kings", "1KI"),
    ("2kings", "2 Kings", "2KI"),
    ("1chronicles", "1 Chronicles", "1CH"),
    ("2chronicles", "2 Chronicles", "2CH"),
    ("ezra", "Ezra", "EZR"),
    ("nehemiah", "Nehemiah", "NEH"),
    ("esther", "Esther", "EST"),
    ("job", "Job", "JOB"),
    ("psalms", "Psalms", "PSA"),
    ("proverbs", "Proverbs", "PRO"),
    ("ecclesiastes", "Ecclesiastes", "ECC"),
    ("songofsolomon", "Song of Solomon", "SNG"),
    ("isaiah", "Isaiah", "ISA"),
    ("jeremiah", "Jeremiah", "JER"),
    ("lamentations", "Lamentations", "LAM"),
    ("ezekiel", "Ezekiel", "EZK"),
    ("daniel", "Daniel", "DAN"),
    ("hosea", "Hosea", "HOS"),
    ("joel", "Joel", "JOL"),
    ("amos", "Amos", "AMO"),
    ("obadiah", "Obadiah", "OBA"),
    ("jonah", "Jonah", "JON"),
    ("micah", "Micah", "MIC"),
    ("nahum", "Nahum", "NAM"),
    ("habakkuk", "Habakkuk", "HAB"),
    ("zephaniah", "Zephaniah", "ZEP"),
    ("haggai", "Haggai", "HAG"),
    ("zechariah", "Zechariah", "ZEC"),
    ("malachi", "Malachi", "MAL"),
    ("matthew", "Matthew", "MAT"),
    ("mark", "Mark", "MRK"),
    ("luke", "Luke", "LUK"),
    ("john", "John", "JHN"),
    ("acts", "Acts", "ACT"),
    ("romans", "Romans", "ROM"),
    ("1corinthians", "1 Corinthians", "1CO"),
    ("2corinthians", "2 Corinthians", "2CO"),
    ("galatians", "Galatians", "GAL"),
    ("ephesians", "Ephesians", "EPH"),
    ("philippians", "Philippians", "PHP"),
    ("colossians", "Colossians", "COL"),
    ("1thessalonians", "1 Thessalonians", "1TH"),
    ("2thessalonians", "2 Thessalonians", "2TH"),
    ("1timothy", "1 Timothy", "1TI"),
    ("2timothy", "2 Timothy", "2TI"),
    ("titus", "Titus", "TIT"),
    ("philemon", "Philemon", "PHM"),
    ("hebrews", "Hebrews", "HEB"),
    ("james", "James", "JAS"),
    ("1peter", "1 Peter", "1PE"),
    ("2peter", "2 Peter", "2PE"),
    ("1john", "1 John", "1JN"),
    ("2john", "2 John", "2JN"),
    ("3john", "3 John", "3JN"),
    ("jude", "Jude", "JUD"),
    ("revelation", "Revelation", "REV"),
]

CANON: tuple[CanonBook, ...] = tuple(
    CanonBook(order=i, id=book_id, name=name, abbreviation=abbrev)
    for i, (book_id, name, abbrev) in enumerate(_BOOKS, start=1)
)

_BY_KEY: dict[str, CanonBook] = {}
for _book in CANON:
    for _key in (_book.id, _book.name, _book.abbreviation):
        _BY_KEY[re.sub(r"[\s\-_]", "", _key.lower())] = _book

BOOK_FILENAME_PATTERN = re.compile(r"^(?P<order>\d{2})-(?P<id>[a-z0-9]+)\.json$")


def is_valid_order(order: object) -> bool:
    return isinstance(order, int) and not isinstance(order, bool) and 1 <= order <= CANON_SIZE


def testament_for_order(order: int) -> str:
    """Canonical testament ('OT' or 'NT') for a book order.

    Raises:
        ValueError: If order is outside 1..66
    """
    if order in OT_RANGE:
        return "OT"
    if order in NT_RANGE:
        return "NT"
    raise ValueError(f"Book order out of canonical range: {order}")


def normalize_testament(value: object) -> str | None:
    """Map 'old'/'new'/'OT'/'NT' (any case) to 'OT'/'NT'."""
    if not isinstance(value, str):
        return None
    return {"old": "OT", "ot": "OT", "new": "NT", "nt": "NT"}.get(value.lower())


def book_for_order(order: int) -> CanonBook:
    """Look up a canonical book by its 1-based order."""
    if not is_valid_order(order):
        raise ValueError(f"Book order out of canonical range: {order}")
    return CANON[order - 1]


def order_for_name(name: str) -> int:
    """Resolve a book id, name or abbreviation to its order (0 if unknown)."""
    book = _BY_KEY.get(re.sub(r"[\s\-_]", "", name.lower()))
    return book.order if book else 0


def book_filename(order: int) -> str:
    """Conventional file path of a book inside a package."""
    book = book_for_order(order)
    return f"books/{order:02d}-{book.id}.json"


def order_from_filename(filename: str) -> int | None:
    """Order encoded in a ``NN-id.json`` book filename, if any."""
    match = BOOK_FILENAME_PATTERN.match(filename.rsplit("/", 1)[-1])
    if not match:
        return None
    return int(match.group("order"))
