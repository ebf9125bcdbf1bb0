# app/services/game_rules.py
"""
Hit predicates per game mode, evaluated against the 4-digit 1st-prize number.

The quotation only sets the multiplier; what counts as a hit is decided here,
one explicit function per mode.
"""
from typing import Callable, Dict

from app.core.errors import InvalidSelection

GRUPO = "Grupo"
CENTENA = "Centena"
DEZENA = "Dezena"
MILHAR = "Milhar"

# (id, name, description, quotation, sort_order)
DEFAULT_GAME_MODES = (
    (1, GRUPO, "Jogue no grupo do animal", 18, 1),
    (2, CENTENA, "Jogue nos três últimos números", 900, 2),
    (3, DEZENA, "Jogue nos dois últimos números", 90, 3),
    (4, MILHAR, "Jogue nos quatro números (milhar completa)", 9000, 4),
)

GROUP_COUNT = 25


def normalize_result(result: str | int) -> str:
    s = str(result).strip()
    if not s.isdigit() or len(s) > 4:
        raise InvalidSelection(f"draw result must be up to 4 digits: {result!r}")
    return s.zfill(4)


def group_of(dezena: str) -> int:
    """01-04 -> 1 (Avestruz) ... 97-99,00 -> 25 (Vaca)."""
    n = int(dezena)
    if n == 0:
        return GROUP_COUNT
    return (n - 1) // 4 + 1


def _digits(selection: str | int, width: int) -> str:
    s = str(selection).strip()
    if len(s) != width or not s.isdigit():
        raise InvalidSelection(f"selection must be exactly {width} digits: {selection!r}")
    return s


def _group(selection: str | int) -> str:
    s = str(selection).strip()
    if not s.isdigit() or not 1 <= int(s) <= GROUP_COUNT:
        raise InvalidSelection(f"group must be 1..{GROUP_COUNT}: {selection!r}")
    return str(int(s))


NORMALIZERS: Dict[str, Callable[[str | int], str]] = {
    MILHAR: lambda s: _digits(s, 4),
    CENTENA: lambda s: _digits(s, 3),
    DEZENA: lambda s: _digits(s, 2),
    GRUPO: _group,
}

PREDICATES: Dict[str, Callable[[str, str], bool]] = {
    MILHAR: lambda sel, res: res == sel,
    CENTENA: lambda sel, res: res[-3:] == sel,
    DEZENA: lambda sel, res: res[-2:] == sel,
    GRUPO: lambda sel, res: group_of(res[-2:]) == int(sel),
}


def normalize_selection(mode_name: str, selection: str | int) -> str:
    try:
        normalizer = NORMALIZERS[mode_name]
    except KeyError:
        raise InvalidSelection(f"unknown game mode: {mode_name}") from None
    return normalizer(selection)


def is_hit(mode_name: str, selection: str, result: str) -> bool:
    return PREDICATES[mode_name](selection, normalize_result(result))
