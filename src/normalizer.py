"""
Normalization of project codes and drawing numbers typed into the label form.

Workers type whatever is on the paperwork: "befr 0124", "BEFR-0124",
"bl7 tür vorne". The printed label and the Todoist task should always show
one canonical spelling so pallets of one commission group together.
"""

import re
from typing import Optional

LETTER_COUNT = 4
DIGIT_COUNT = 4
LETTER_PAD = "X"
DIGIT_PAD = "0"

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_DRAWING_CODE = re.compile(r"bl\s*\d+", re.IGNORECASE)


def to_title_case(text: str) -> str:
    """
    Capitalize each whitespace-separated word, lowercase the rest.

    "tür vorne RECHTS" -> "Tür Vorne Rechts"
    """
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def normalize_project(raw: Optional[str]) -> str:
    """
    Canonical project code: 4 letters + 4 digits, optional trailing "K".

    Letters are padded with "X" on the right, digits with "0" on the left;
    both are truncated to four.
    Examples:
        "befr0124" -> "BEFR0124"
        "bl22k"    -> "BLXX0022K"
        "---"      -> "XXXX0000"

    Blank input returns "" so the form can reject it.
    """
    if not raw or not raw.strip():
        return ""

    s = _NON_ALNUM.sub("", raw.upper())

    has_k = s.endswith("K")
    if has_k:
        s = s[:-1]

    letters = "".join(ch for ch in s if ch.isalpha())
    digits = "".join(ch for ch in s if ch.isdigit())

    result = (letters + LETTER_PAD * LETTER_COUNT)[:LETTER_COUNT]
    result += digits[:DIGIT_COUNT].rjust(DIGIT_COUNT, DIGIT_PAD)
    if has_k:
        result += "K"
    return result


def _normalize_drawing_code(token: str) -> str:
    number = re.sub(r"\D", "", token[2:]) or "0"
    return "BL" + number.zfill(2)[-2:]


def normalize_drawing(raw: Optional[str]) -> str:
    """
    Canonical drawing description.

    BL codes become "BL" + two digits (last two of the number), free text in
    between is title-cased, parts are joined with ", " in input order.
    Examples:
        "tür vorne rechts bl7" -> "Tür Vorne Rechts, BL07"
        "bl 123 Seitenwand"    -> "BL23, Seitenwand"
        "dach"                 -> "Dach"
    """
    if not raw or not raw.strip():
        return ""

    text = raw.strip()
    parts = []
    last_end = 0

    for match in _DRAWING_CODE.finditer(text):
        before = text[last_end:match.start()].strip()
        if before:
            parts.append(to_title_case(before))
        parts.append(_normalize_drawing_code(match.group(0)))
        last_end = match.end()

    if not parts:
        return to_title_case(text)

    tail = text[last_end:].strip()
    if tail:
        parts.append(to_title_case(tail))

    return ", ".join(parts)
