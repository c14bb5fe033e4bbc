"""
Generation stepping for RUBE playfields.

A generation is two scans of the bounding box, column by column:

  1. Rule pass. Each cell's next symbol is computed from the current
     grid only. Cells dispatch on their category to an ordered tuple of
     rules; every rule that matches overwrites the tentative result, so
     the last match in table order wins.
  2. Fix pass. Effects that span more than one cell (door pushes of
     crate runs, port consumption, pivots, destroyers) are written into
     the next grid, again reading only the current one.

Ports emit through an ``OutputSink`` during the rule pass, in scan order.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Optional

from rube_cells import (
    ADDER,
    ALU,
    BLANK,
    CHAR_TAG,
    COMPARATOR,
    COPIER,
    CRATE_COPIER,
    CRUSHER,
    DOOR_LEFT,
    DOOR_RIGHT,
    DOORS,
    ELEVATOR,
    FURNACE,
    NUMBER_TAG,
    PIVOT,
    PORT,
    SHIFT_LEFT,
    SHIFT_RIGHT,
    SPREADER,
    SUBTRACTOR,
    SWINCH_DOWN,
    SWINCH_UP,
    SWITCH,
    WINCH_DOWN,
    WINCH_UP,
    crate_value,
    is_blank,
    is_block,
    is_crate,
    is_ramp,
    is_support,
    value_to_crate,
)
from rube_grid import Grid, Neighborhood
from rube_io import CountingSink, NullSink, OutputSink

Rule = Callable[[Neighborhood], Optional[str]]

CRATE_HISTORY = 500
DIGEST_HISTORY = 60
MAX_CYCLE_PERIOD = 30


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def _run_end(at: Neighborhood, start: int, d: int) -> int:
    """Walk from ``start`` in direction ``d`` over crates resting on support.

    Returns the offset of the first cell that is not part of the run
    (``start`` itself when the run is empty).
    """
    bx = start
    while is_crate(at(bx, 0)) and is_support(at(bx, 1)):
        bx += d
    return bx


def _rank(symbol: str) -> int:
    """Comparator operand value.

    Crates rank by their hex value. Any other symbol ranks by its offset
    from 'a' as a signed byte, so '~' and 'g'..'z' outrank every crate
    while blanks and punctuation rank below them.
    """
    if is_crate(symbol):
        return crate_value(symbol)
    code = ord(symbol)
    if code >= 0x80:
        code -= 0x100
    return code - ord("a") + 10


def _winch_holds(at: Neighborhood, ox: int, oy: int) -> bool:
    """True when a winch takes the crate at ``(ox, oy)`` this generation."""
    for d in (1, -1):
        if at(ox + d, oy - 1) == WINCH_UP and is_blank(at(ox + 2 * d, oy - 2)):
            return True
        if at(ox + d, oy + 1) == WINCH_DOWN and is_blank(at(ox + 2 * d, oy + 2)):
            return True
    return False


def _swinch_holds(at: Neighborhood, ox: int, oy: int) -> bool:
    return (at(ox + 1, oy) in (SWINCH_UP, SWINCH_DOWN)
            or at(ox - 1, oy) in (SWINCH_UP, SWINCH_DOWN))


def _combine(op: str, near: str, far: str) -> str:
    if op == ADDER:
        return value_to_crate((crate_value(near) + crate_value(far)) % 16)
    return value_to_crate((crate_value(far) - crate_value(near)) % 16)


# ═══════════════════════════════════════════════════════════════════════
#  Rules for blank cells (table order = priority, last match wins)
# ═══════════════════════════════════════════════════════════════════════

def _falls_in(at: Neighborhood) -> str | None:
    above = at(0, -1)
    if above in DOORS:
        return above
    if is_crate(above):
        # A crate hanging on a winch or swinch leaves by that route instead
        if _winch_holds(at, 0, -1) or _swinch_holds(at, 0, -1):
            return None
        return above
    return None


def _winch_up(at: Neighborhood) -> str | None:
    out = None
    for d in (1, -1):
        if at(d, 1) == WINCH_UP and is_crate(at(2 * d, 2)):
            out = at(2 * d, 2)
    return out


def _swinch_up(at: Neighborhood) -> str | None:
    out = None
    for d in (1, -1):
        if at(d, 1) == SWINCH_UP and is_crate(at(2 * d, 1)):
            out = at(2 * d, 1)
    return out


def _winch_down(at: Neighborhood) -> str | None:
    out = None
    for d in (1, -1):
        if at(d, -1) == WINCH_DOWN and is_crate(at(2 * d, -2)):
            out = at(2 * d, -2)
    return out


def _swinch_down(at: Neighborhood) -> str | None:
    out = None
    for d in (1, -1):
        if at(d, -1) == SWINCH_DOWN and is_crate(at(2 * d, -1)):
            out = at(2 * d, -1)
    return out


def _spreads(at: Neighborhood) -> str | None:
    if at(0, -1) == SPREADER:
        return SPREADER
    for d in (-1, 1):
        if at(d, 0) == SPREADER and is_support(at(d, 1)):
            return SPREADER
    return None


def _alu(op: str) -> Rule:
    def rule(at: Neighborhood) -> str | None:
        out = None
        for d in (1, -1):
            if at(d, -1) == op and is_crate(at(d, 0)) and is_crate(at(2 * d, 0)):
                out = _combine(op, at(d, 0), at(2 * d, 0))
        return out
    rule.__name__ = f"_alu_{'add' if op == ADDER else 'sub'}"
    return rule


def _compares(at: Neighborhood) -> str | None:
    out = None
    # K up-right passes its crate when it is smaller than the one beneath
    if at(1, -1) == COMPARATOR and is_crate(at(1, -2)):
        if _rank(at(1, -2)) < _rank(at(1, 0)):
            out = at(1, -2)
    if at(-1, -1) == COMPARATOR and is_crate(at(-1, -2)):
        if _rank(at(-1, -2)) >= _rank(at(-1, 0)):
            out = at(-1, -2)
    return out


def _shifted(at: Neighborhood) -> str | None:
    out = None
    if is_crate(at(-1, 0)) and at(-1, 1) == SHIFT_RIGHT:
        out = at(-1, 0)
    if is_crate(at(1, 0)) and at(1, 1) == SHIFT_LEFT:
        out = at(1, 0)
    return out


def _copied(at: Neighborhood) -> str | None:
    out = None
    if at(0, -1) == COPIER:
        out = at(0, -2)
    if at(0, -1) == CRATE_COPIER and is_crate(at(0, -2)):
        out = at(0, -2)
    return out


def _elevated(at: Neighborhood) -> str | None:
    if at(0, 1) == ELEVATOR and is_crate(at(0, 2)):
        return at(0, 2)
    return None


def _door_enters(at: Neighborhood) -> str | None:
    if at(-1, 0) == DOOR_LEFT and at(1, 0) == DOOR_RIGHT:
        return BLANK
    out = None
    if at(-1, 0) == DOOR_LEFT and is_support(at(-1, 1)):
        out = DOOR_LEFT
    if at(1, 0) == DOOR_RIGHT and is_support(at(1, 1)):
        out = DOOR_RIGHT
    if is_ramp(at(0, 1)):
        if at(-1, 1) == DOOR_LEFT and is_support(at(-1, 2)):
            out = DOOR_LEFT
        if at(1, 1) == DOOR_RIGHT and is_support(at(1, 2)):
            out = DOOR_RIGHT
    return out


def _pushed_in(at: Neighborhood) -> str | None:
    out = None
    for d, door in ((-1, DOOR_LEFT), (1, DOOR_RIGHT)):
        if is_crate(at(d, 0)):
            end = _run_end(at, d, d)
            if end != d and at(end, 0) == door:
                out = at(d, 0)
    return out


BLANK_RULES: tuple[Rule, ...] = (
    _falls_in,
    _winch_up,
    _swinch_up,
    _winch_down,
    _swinch_down,
    _spreads,
    _alu(ADDER),
    _alu(SUBTRACTOR),
    _compares,
    _shifted,
    _copied,
    _elevated,
    _door_enters,
    _pushed_in,
)


# ═══════════════════════════════════════════════════════════════════════
#  Rules for doors, swinches and ports
# ═══════════════════════════════════════════════════════════════════════

def _door_leaves(d: int) -> Rule:
    """Door facing ``d`` vacates its cell (it moves, falls or is knocked off)."""
    door = DOOR_LEFT if d == 1 else DOOR_RIGHT

    def rule(at: Neighborhood) -> str | None:
        out = None
        ahead, below = at(d, 0), at(0, 1)
        if ahead == door or is_blank(ahead) or is_blank(below) or below == door:
            out = BLANK
        if is_ramp(below) or is_ramp(at(1, 0)) or is_ramp(at(-1, 0)):
            out = BLANK
        return out

    rule.__name__ = f"_door_leaves_{door}"
    return rule


def _door_turns(d: int) -> Rule:
    """Door facing ``d`` reverses at a block, switch, pivot or jammed run."""
    reverse = DOOR_RIGHT if d == 1 else DOOR_LEFT

    def rule(at: Neighborhood) -> str | None:
        out = None
        ahead = at(d, 0)
        if is_block(ahead) or at(d, -1) == SWITCH or ahead == PIVOT:
            out = reverse
        if is_crate(ahead):
            end = _run_end(at, d, d)
            if end != d and is_block(at(end, 0)):
                out = reverse
        return out

    rule.__name__ = f"_door_turns_{reverse}"
    return rule


_TOGGLED = {SWINCH_DOWN: SWINCH_UP, SWINCH_UP: SWINCH_DOWN, PORT: SWINCH_UP}


def _toggles(at: Neighborhood) -> str | None:
    # Ports share the A swinch's toggle
    if is_crate(at(-1, 0)) or is_crate(at(1, 0)):
        return _TOGGLED[at(0, 0)]
    return None


SYMBOL_RULES: dict[str, tuple[Rule, ...]] = {
    DOOR_LEFT: (_door_leaves(1), _door_turns(1)),
    DOOR_RIGHT: (_door_leaves(-1), _door_turns(-1)),
    SWINCH_DOWN: (_toggles,),
    SWINCH_UP: (_toggles,),
    PORT: (_toggles,),
}


def _port_value(at: Neighborhood) -> int | None:
    low, high = at(0, -1), at(0, -2)
    if is_crate(low) and is_crate(high):
        return crate_value(low) + crate_value(high) * 16
    return None


def _fire_port(at: Neighborhood, sink: OutputSink) -> None:
    value = _port_value(at)
    if value is None:
        return
    tag = at(0, 1)
    if tag == NUMBER_TAG:
        sink.write_number(value)
    elif tag == CHAR_TAG:
        sink.write_char(value)


# ═══════════════════════════════════════════════════════════════════════
#  Rules for crates (applied after the copy-forward default)
# ═══════════════════════════════════════════════════════════════════════

def _unsupported(at: Neighborhood) -> str | None:
    return at(0, 0) if is_support(at(0, 1)) else BLANK


def _conveyed(at: Neighborhood) -> str | None:
    out = None
    if is_blank(at(1, 0)) and at(0, 1) == SHIFT_RIGHT:
        out = BLANK
    if is_blank(at(-1, 0)) and at(0, 1) == SHIFT_LEFT:
        out = BLANK
    return out


def _winched_away(at: Neighborhood) -> str | None:
    # A winch takes the crate only when its delivery cell is open
    return BLANK if _winch_holds(at, 0, 0) else None


def _swinched_away(at: Neighborhood) -> str | None:
    return BLANK if _swinch_holds(at, 0, 0) else None


def _consumed(at: Neighborhood) -> str | None:
    out = None
    for d in (-1, 1):
        if is_crate(at(d, 0)) and at(d, -1) in ALU:
            out = BLANK
    if (is_crate(at(-1, 0)) or is_crate(at(1, 0))) and at(0, -1) in ALU:
        out = BLANK
    return out


CRATE_RULES: tuple[Rule, ...] = (
    _unsupported,
    _conveyed,
    _winched_away,
    _swinched_away,
    _consumed,
)


# ═══════════════════════════════════════════════════════════════════════
#  Passes
# ═══════════════════════════════════════════════════════════════════════

def _apply(rules: tuple[Rule, ...], at: Neighborhood, initial: str) -> str:
    result = initial
    for rule in rules:
        symbol = rule(at)
        if symbol is not None:
            result = symbol
    return result


def evaluate(current: Grid, x: int, y: int, sink: OutputSink) -> str:
    """Next symbol for ``(x, y)``; fires the port there if it is one."""
    at = current.around(x, y)
    here = at(0, 0)
    if is_blank(here):
        return _apply(BLANK_RULES, at, here)
    if is_crate(here):
        return _apply(CRATE_RULES, at, here)
    if here == PORT:
        _fire_port(at, sink)
    return _apply(SYMBOL_RULES.get(here, ()), at, here)


def _push_run(at: Neighborhood, nxt: Grid, x: int, y: int) -> None:
    """Slide a supported crate run one cell away from the door touching it."""
    for d, door in ((-1, DOOR_RIGHT), (1, DOOR_LEFT)):
        if at(-d, 0) != door:
            continue
        end = _run_end(at, 0, d)
        if end == 0 or not is_blank(at(end, 0)):
            continue
        for bx in range(0, end, d):
            nxt.set(x + bx + d, y, at(bx, 0))
        nxt.set(x, y, door)
        nxt.set(x - d, y, BLANK)


def settle(current: Grid, nxt: Grid, x: int, y: int) -> None:
    """Fix-pass effects of the cell at ``(x, y)``, written into ``nxt``."""
    at = current.around(x, y)
    here = at(0, 0)
    sides = (at(-1, 0), at(1, 0), at(0, -1), at(0, 1))

    if here == PIVOT:
        if at(-1, 0) == DOOR_RIGHT or at(1, 0) == DOOR_LEFT:
            nxt.set(x, y, BLANK)
    elif here == PORT:
        if _port_value(at) is not None:
            nxt.set(x, y - 1, BLANK)
            nxt.set(x, y - 2, BLANK)

    if is_crate(here):
        _push_run(at, nxt, x, y)
        if CRUSHER in sides:
            nxt.set(x, y, BLANK)

    if FURNACE in sides:
        nxt.set(x, y, BLANK)


def step(
    current: Grid,
    sink: OutputSink | None = None,
    out: Grid | None = None,
) -> Grid:
    """Compute the generation after ``current``.

    ``current`` is only read. The result is written into ``out`` when one
    is given (it must be a different buffer of the same arena), otherwise
    into a fresh grid.
    """
    if out is current:
        raise ValueError("step() cannot write into the grid it reads")
    sink = sink if sink is not None else NullSink()
    nxt = current.copy() if out is None else current.copy_into(out)

    for x, y in current.coords():
        nxt.set(x, y, evaluate(current, x, y, sink))
    for x, y in current.coords():
        settle(current, nxt, x, y)
    return nxt


# ═══════════════════════════════════════════════════════════════════════
#  Machine
# ═══════════════════════════════════════════════════════════════════════

class Machine:
    """A playfield with its two buffers and per-generation telemetry.

    The driver calls ``advance()`` once per tick; pacing, rendering and
    quitting are the driver's business.
    """

    def __init__(self, grid: Grid, sink: OutputSink | None = None) -> None:
        self.current: Grid = grid
        self._back: Grid = grid.copy()
        self.sink: CountingSink = CountingSink(sink if sink is not None else NullSink())
        self.generation: int = 0

        self.crate_history: deque[int] = deque(maxlen=CRATE_HISTORY)
        self.digest_history: deque[int] = deque(maxlen=DIGEST_HISTORY)
        self.cycle_period: int = 0
        self.last_emitted: int = 0

        self.crate_history.append(grid.crate_count())
        self.digest_history.append(grid.digest())

    @property
    def emitted(self) -> int:
        return self.sink.count

    @property
    def settled(self) -> bool:
        return self.cycle_period == 1

    def advance(self) -> str:
        """Run one generation and swap buffers. Returns an event string."""
        before = self.sink.count
        step(self.current, self.sink, out=self._back)
        self.current, self._back = self._back, self.current
        self.generation += 1
        self.last_emitted = self.sink.count - before

        self.crate_history.append(self.current.crate_count())
        self.digest_history.append(self.current.digest())
        previous_period = self.cycle_period
        self.cycle_period = self._detect_cycle()

        if self.last_emitted:
            return "output"
        if self.cycle_period and self.cycle_period != previous_period:
            return "settled" if self.cycle_period == 1 else f"cycle={self.cycle_period}"
        return ""

    def _detect_cycle(self) -> int:
        hh_len = len(self.digest_history)
        if hh_len < 2:
            return 0
        latest = self.digest_history[-1]
        for period in range(1, min(MAX_CYCLE_PERIOD + 1, hh_len)):
            if self.digest_history[-(period + 1)] == latest:
                return period
        return 0

    def crates(self) -> int:
        return self.crate_history[-1] if self.crate_history else 0
