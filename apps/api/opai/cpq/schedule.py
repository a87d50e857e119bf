from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

WEEKDAYS = ["lunes", "martes", "miercoles", "jueves", "viernes", "sabado", "domingo"]

_WEEKDAY_ALIASES: dict[str, str] = {
    "lu": "lunes",
    "lun": "lunes",
    "monday": "lunes",
    "mon": "lunes",
    "ma": "martes",
    "mar": "martes",
    "tuesday": "martes",
    "tue": "martes",
    "mi": "miercoles",
    "mie": "miercoles",
    "wednesday": "miercoles",
    "wed": "miercoles",
    "ju": "jueves",
    "jue": "jueves",
    "thursday": "jueves",
    "thu": "jueves",
    "vi": "viernes",
    "vie": "viernes",
    "friday": "viernes",
    "fri": "viernes",
    "sa": "sabado",
    "sab": "sabado",
    "saturday": "sabado",
    "sat": "sabado",
    "do": "domingo",
    "dom": "domingo",
    "sunday": "domingo",
    "sun": "domingo",
}
_WEEKDAY_ALIASES.update({day: day for day in WEEKDAYS})

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?:\s*(a\.?\s*m\.?|p\.?\s*m\.?))?$", re.IGNORECASE)


def fold_text(value: str) -> str:
    """Lowercase ``value`` and strip diacritics ("Miércoles" -> "miercoles")."""
    decomposed = unicodedata.normalize("NFD", value.strip().lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_weekdays(days: Iterable[str | None] | None) -> list[str]:
    if not days:
        return list(WEEKDAYS)

    recognized: set[str] = set()
    for day in days:
        if not isinstance(day, str):
            continue
        canonical = _WEEKDAY_ALIASES.get(fold_text(day))
        if canonical is not None:
            recognized.add(canonical)

    if not recognized:
        return list(WEEKDAYS)
    return [day for day in WEEKDAYS if day in recognized]


def normalize_time(value: object, fallback: str) -> str:
    if not isinstance(value, str) or not value.strip():
        return fallback

    match = _TIME_RE.match(value.strip().lower())
    if match is None:
        return fallback

    hour = int(match.group(1))
    minute = int(match.group(2))
    suffix = re.sub(r"[\s.]", "", match.group(3) or "")
    if minute > 59:
        return fallback
    if suffix == "pm" and hour < 12:
        hour += 12
    if suffix == "am" and hour == 12:
        hour = 0
    if hour > 23:
        return fallback
    return f"{hour:02d}:{minute:02d}"
