"""
Symbol classification for RUBE playfields.

Every cell holds one symbol; its category is decided by the symbol alone.
The scalar predicates are what the engine calls per neighbour read. The
lookup tables mirror them for whole-buffer queries (crate counts, colour
categories) so the driver never loops over the arena in Python.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

# ── Symbols ─────────────────────────────────────────────────────────────
BLANK = " "
CRATES = "0123456789abcdef"

BLOCK = "="
RAMPS = "/\\"
DOOR_LEFT = "("     # travels rightward
DOOR_RIGHT = ")"    # travels leftward
DOORS = DOOR_LEFT + DOOR_RIGHT

WINCH_UP = "W"
WINCH_DOWN = "M"
SWINCH_UP = "V"
SWINCH_DOWN = "A"

ADDER = "+"
SUBTRACTOR = "-"
ALU = ADDER + SUBTRACTOR
COMPARATOR = "K"

SHIFT_RIGHT = ">"
SHIFT_LEFT = "<"
COPIER = ":"
CRATE_COPIER = ";"
ELEVATOR = "."
PIVOT = "*"
SWITCH = ","
SPREADER = "~"

PORT = "O"
NUMBER_TAG = "b"
CHAR_TAG = "c"

CRUSHER = "C"       # blanks adjacent crates
FURNACE = "F"       # blanks anything adjacent

SUPPORTS = (
    BLOCK + CRATES + DOORS + CRATE_COPIER + RAMPS + COPIER + PIVOT + SWITCH
    + SHIFT_RIGHT + SHIFT_LEFT + PORT + WINCH_UP + WINCH_DOWN
    + SWINCH_DOWN + SWINCH_UP + SPREADER + ELEVATOR
)

_CRATE_SET = frozenset(CRATES)
_SUPPORT_SET = frozenset(SUPPORTS)
_RAMP_SET = frozenset(RAMPS)

# ── Categories (for rendering) ──────────────────────────────────────────
CAT_INERT = 0
CAT_BLANK = 1
CAT_CRATE = 2
CAT_STRUCTURE = 3
CAT_DOOR = 4
CAT_MACHINE = 5
CAT_PORT = 6
CAT_DESTROYER = 7

CATEGORY_NAMES: dict[int, str] = {
    CAT_INERT: "inert",
    CAT_BLANK: "blank",
    CAT_CRATE: "crate",
    CAT_STRUCTURE: "structure",
    CAT_DOOR: "door",
    CAT_MACHINE: "machine",
    CAT_PORT: "port",
    CAT_DESTROYER: "destroyer",
}

_MACHINE_SYMBOLS = (
    WINCH_UP + WINCH_DOWN + SWINCH_UP + SWINCH_DOWN + ALU + COMPARATOR
    + SHIFT_RIGHT + SHIFT_LEFT + COPIER + CRATE_COPIER + ELEVATOR
    + PIVOT + SWITCH + SPREADER
)


def _lut(symbols: str) -> NDArray[np.bool_]:
    table = np.zeros(256, dtype=np.bool_)
    table[[ord(s) for s in symbols]] = True
    return table


CRATE_LUT: NDArray[np.bool_] = _lut(CRATES)
SUPPORT_LUT: NDArray[np.bool_] = _lut(SUPPORTS)


def _category_lut() -> NDArray[np.uint8]:
    table = np.full(256, CAT_INERT, dtype=np.uint8)
    table[: ord(BLANK) + 1] = CAT_BLANK
    for symbols, cat in (
        (BLOCK + RAMPS, CAT_STRUCTURE),
        (DOORS, CAT_DOOR),
        (_MACHINE_SYMBOLS, CAT_MACHINE),
        (PORT, CAT_PORT),
        (CRUSHER + FURNACE, CAT_DESTROYER),
        (CRATES, CAT_CRATE),
    ):
        table[[ord(s) for s in symbols]] = cat
    return table


CATEGORY_LUT: NDArray[np.uint8] = _category_lut()


# ═══════════════════════════════════════════════════════════════════════
#  Scalar predicates
# ═══════════════════════════════════════════════════════════════════════

def is_blank(symbol: str) -> bool:
    """Space and every control code count as empty."""
    return len(symbol) == 1 and symbol <= BLANK


def is_crate(symbol: str) -> bool:
    return symbol in _CRATE_SET


def is_support(symbol: str) -> bool:
    return symbol in _SUPPORT_SET


def is_ramp(symbol: str) -> bool:
    return symbol in _RAMP_SET


def is_block(symbol: str) -> bool:
    return symbol == BLOCK


def crate_value(symbol: str) -> int:
    """Payload of a crate digit, 0..15."""
    if symbol not in _CRATE_SET:
        raise ValueError(f"not a crate: {symbol!r}")
    return CRATES.index(symbol)


def value_to_crate(value: int) -> str:
    """Crate digit carrying ``value`` (0..15)."""
    if not 0 <= value < len(CRATES):
        raise ValueError(f"crate value out of range: {value}")
    return CRATES[value]


# ═══════════════════════════════════════════════════════════════════════
#  Vectorised lookups
# ═══════════════════════════════════════════════════════════════════════

def crate_mask(codes: NDArray[np.uint8]) -> NDArray[np.bool_]:
    """Boolean mask of crate cells in an array of symbol codes."""
    return CRATE_LUT[codes]


def support_mask(codes: NDArray[np.uint8]) -> NDArray[np.bool_]:
    return SUPPORT_LUT[codes]


def categories(codes: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Category code (``CAT_*``) for every cell in an array of symbol codes."""
    return CATEGORY_LUT[codes]
