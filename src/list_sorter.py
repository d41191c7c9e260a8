"""
Ordering of pallets for the remaining list and the load list.

Most urgent first (Todoist priority 4 is the highest), then alphabetically by
task content the way a German reader expects: case does not matter, umlauts
sort with their base letter (ä with a), ß sorts as ss.
"""

import unicodedata
from typing import Any, Iterable, List, Tuple

_SPECIAL_FOLDS = {
    "ß": "ss",
    "ẞ": "ss",
    "æ": "ae",
    "ø": "o",
    "œ": "oe",
}


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def german_sort_key(text: str) -> Tuple[str, str, str, str]:
    """
    Collation key approximating German (DIN 5007-1) dictionary order.

    Levels: base letters case-insensitive, then accents, then case, then the
    raw string so the order is total.
    """
    text = text or ""
    folded = text.casefold()
    for special, replacement in _SPECIAL_FOLDS.items():
        folded = folded.replace(special, replacement)

    primary = _strip_accents(folded)
    secondary = unicodedata.normalize("NFD", folded)
    # Lowercase before uppercase on the tertiary level
    tertiary = "".join("1" if ch.isupper() else "0" for ch in text)
    return primary, secondary, tertiary, text


def _field(task: Any, name: str) -> Any:
    if isinstance(task, dict):
        return task.get(name)
    return getattr(task, name, None)


def sort_tasks(tasks: Iterable[Any]) -> List[Any]:
    """
    Return a new list ordered by priority (descending), then content.

    Accepts Task objects or dicts with "priority" and "content". The sort is
    stable, so tasks with identical keys keep their input order.
    """
    return sorted(
        tasks,
        key=lambda t: (-int(_field(t, "priority") or 1),
                       german_sort_key(str(_field(t, "content") or ""))),
    )


def sort_labels(labels: Iterable[str]) -> List[str]:
    """Distinct label names in German order."""
    return sorted(set(labels), key=german_sort_key)
