#!/usr/bin/env python3
"""
  R U B E
  A playfield of crates, ramps, doors, winches and ports, run one
  generation at a time.

  The program text is the machine: every character is a cell, and each
  generation gravity, conveyors and gates rearrange the crates. Ports
  ('O') print whatever byte is stacked on them.

  Usage:
    python3 rube.py hello.rub                 # live curses view
    python3 rube.py -d hello.rub              # headless, output to stdout
    python3 rube.py -q -n 200 hello.rub       # headless, 200 generations
    python3 rube.py -s hello.rub              # single-step (n / Enter)
    python3 rube.py -y 100 -f 5 hello.rub     # 100ms delay, redraw every 5th

  Controls (live view):
    q         quit               SPACE     pause / resume
    n, Enter  single step        +/-       speed up / slow down

  With --stats FILE, telemetry is logged to FILE as CSV.
"""

from __future__ import annotations

import argparse
import curses
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, BinaryIO, Callable, ClassVar, Sequence

from rube_cells import (
    BLANK,
    CAT_BLANK,
    CAT_CRATE,
    CAT_DESTROYER,
    CAT_DOOR,
    CAT_INERT,
    CAT_MACHINE,
    CAT_PORT,
    CAT_STRUCTURE,
    categories,
)
from rube_engine import Machine
from rube_grid import Grid
from rube_io import ENCODING, NUMBER_FORMAT, OutputSink, StreamSink, TeeSink

__version__ = "0.1.0"

# ── Pacing ──────────────────────────────────────────────────────────────
DEFAULT_DELAY_MS = 0
DELAY_STEP_MS = 10
MAX_DELAY_MS = 1000
PAUSED_POLL_MS = 30
LOG_EVERY = 10

# ── Palette: (256-colour, 8-colour fallback) per cell category ─────────
CATEGORY_COLORS: dict[int, tuple[int, int]] = {
    CAT_CRATE: (214, curses.COLOR_YELLOW),
    CAT_STRUCTURE: (245, curses.COLOR_WHITE),
    CAT_DOOR: (81, curses.COLOR_CYAN),
    CAT_MACHINE: (171, curses.COLOR_MAGENTA),
    CAT_PORT: (46, curses.COLOR_GREEN),
    CAT_DESTROYER: (196, curses.COLOR_RED),
    CAT_INERT: (250, curses.COLOR_WHITE),
}

SPARKS = "▁▂▃▄▅▆▇█"
UNPRINTABLE = "�"


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes per-generation telemetry to CSV."""

    HEADER: ClassVar[str] = "gen,time_s,crates,emitted,cycle_period,event\n"

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(
        self,
        gen: int,
        crates: int,
        emitted: int,
        cycle: int,
        event: str = "",
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        try:
            self._fh.write(f"{gen},{t:.3f},{crates},{emitted},{cycle},{event}\n")
            # Flush on events or periodically
            if event or gen % 50 == 0:
                self._fh.flush()
        except OSError:
            pass

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


def log_generation(logger: StatsLogger | None, machine: Machine, event: str) -> None:
    if logger is None:
        return
    if event or machine.generation % LOG_EVERY == 0:
        logger.log(
            gen=machine.generation,
            crates=machine.crates(),
            emitted=machine.emitted,
            cycle=machine.cycle_period,
            event=event,
        )


# ═══════════════════════════════════════════════════════════════════════
#  Output line
# ═══════════════════════════════════════════════════════════════════════

class OutputLine:
    """Program output shown beneath the playfield.

    The visible line starts over when it would run past ``width`` or when
    the program prints a newline; ``transcript`` keeps everything.
    """

    def __init__(self, width: int = 79) -> None:
        self.width: int = width
        self.line: str = ""
        self._parts: list[str] = []

    def write_number(self, value: int) -> None:
        self._put(NUMBER_FORMAT.format(value))

    def write_char(self, code: int) -> None:
        self._put(chr(code))

    def _put(self, text: str) -> None:
        self._parts.append(text)
        if text == "\n":
            self.line = ""
            return
        shown = "".join(c if c.isprintable() else UNPRINTABLE for c in text)
        if len(self.line) + len(shown) > self.width:
            self.line = ""
        self.line += shown

    @property
    def transcript(self) -> str:
        return "".join(self._parts)


# ═══════════════════════════════════════════════════════════════════════
#  Colour management
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Palette:
    """Curses colour pairs per cell category."""

    _pairs: dict[int, int] = field(default_factory=dict)

    def setup(self) -> None:
        if not curses.has_colors():
            return
        curses.start_color()
        try:
            curses.use_default_colors()
            background = -1
        except curses.error:
            background = curses.COLOR_BLACK

        max_pairs = curses.COLOR_PAIRS - 1
        pair_id = 1
        for cat, (rich, basic) in CATEGORY_COLORS.items():
            if pair_id > max_pairs:
                break
            color = rich if curses.COLORS >= 256 else basic
            curses.init_pair(pair_id, color, background)
            self._pairs[cat] = pair_id
            pair_id += 1

    def attr(self, cat: int) -> int:
        a = curses.color_pair(self._pairs.get(cat, 0))
        if cat == CAT_CRATE:
            a |= curses.A_BOLD
        return a


def sparkline(values: Sequence[int], width: int = 24) -> str:
    n = len(values)
    if n < 2:
        return ""
    window = list(values)[max(0, n - width):]
    lo, hi = min(window), max(window)
    n_sparks = len(SPARKS) - 1
    if hi == lo:
        return SPARKS[len(SPARKS) // 2] * len(window)
    return "".join(SPARKS[int((v - lo) / (hi - lo) * n_sparks)] for v in window)


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

def render(
    stdscr: curses.window,
    machine: Machine,
    palette: Palette,
    out_line: OutputLine,
    paused: bool,
    delay_ms: int,
) -> None:
    """Playfield, output line and status bar."""
    max_y, max_x = stdscr.getmaxyx()
    grid = machine.current
    region = grid.region()
    rows = grid.rows()

    draw_rows = max(0, min(len(rows), max_y - 3))
    draw_cols = max(0, min(region.shape[1], max_x - 1))
    cats = categories(region[:draw_rows, :draw_cols]).tolist()

    _addstr = stdscr.addstr
    _attr = palette.attr
    for y in range(draw_rows):
        row = rows[y]
        cat_row = cats[y]
        for x in range(draw_cols):
            cat = cat_row[x]
            if cat == CAT_BLANK or row[x] == BLANK:
                continue
            try:
                _addstr(y, x, row[x], _attr(cat))
            except curses.error:
                pass

    # ── Output line ─────────────────────────────────────────────────
    out_line.width = max(10, max_x - 1)
    if draw_rows + 1 < max_y - 1:
        try:
            _addstr(draw_rows + 1, 0, out_line.line[: max_x - 1])
        except curses.error:
            pass

    # ── Status bar ──────────────────────────────────────────────────
    if machine.settled:
        cycle = "settled"
    elif machine.cycle_period:
        cycle = f"cycle {machine.cycle_period}"
    else:
        cycle = ""
    state = "paused" if paused else "running"
    left = (
        f"  gen {machine.generation:,}  crates {machine.crates():,}  "
        f"out {machine.emitted:,}  {sparkline(machine.crate_history)}"
    )
    right = f"{cycle}  {state} {delay_ms}ms  q spc n +/-  "
    status = left + " " * max(2, max_x - 1 - len(left) - len(right)) + right
    try:
        _addstr(max_y - 1, 0, status[: max_x - 1], curses.A_DIM)
    except curses.error:
        pass


# ═══════════════════════════════════════════════════════════════════════
#  Driver loops
# ═══════════════════════════════════════════════════════════════════════

def live(
    stdscr: curses.window,
    machine: Machine,
    out_line: OutputLine,
    options: argparse.Namespace,
    logger: StatsLogger | None = None,
) -> None:
    """Curses driver: keys, one generation per tick, redraw, delay."""
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.nodelay(True)
    stdscr.timeout(0)

    palette = Palette()
    palette.setup()

    paused: bool = options.step
    delay: int = options.delay
    step_keys = (ord("n"), ord("N"), 10, 13, curses.KEY_ENTER)

    def draw() -> None:
        stdscr.erase()
        render(stdscr, machine, palette, out_line, paused, delay)
        stdscr.refresh()

    draw()
    while True:
        try:
            key = stdscr.getch()
        except curses.error:
            key = -1

        if key in (ord("q"), ord("Q")):
            break
        elif key == ord(" "):
            paused = not paused
        elif key in (ord("+"), ord("=")):
            delay = max(0, delay - DELAY_STEP_MS)
        elif key in (ord("-"), ord("_")):
            delay = min(MAX_DELAY_MS, delay + DELAY_STEP_MS)

        if not paused or key in step_keys:
            event = machine.advance()
            log_generation(logger, machine, event)
            if paused or machine.generation % options.frame_skip == 0:
                draw()
            if options.generations and machine.generation >= options.generations:
                break
        elif key != -1:
            draw()

        time.sleep((PAUSED_POLL_MS if paused else delay) / 1000.0)


def run_headless(
    machine: Machine,
    generations: int = 0,
    delay_ms: int = 0,
    ticks: IO[str] | None = None,
    logger: StatsLogger | None = None,
) -> None:
    """Advance until ``generations`` is reached (0 = forever).

    With ``ticks``, one line is read before each generation; end of input
    or a line starting with 'q' stops the run.
    """
    while generations == 0 or machine.generation < generations:
        if ticks is not None:
            line = ticks.readline()
            if not line or line.strip().lower().startswith("q"):
                break
        event = machine.advance()
        log_generation(logger, machine, event)
        if delay_ms > 0:
            time.sleep(delay_ms / 1000.0)


# ═══════════════════════════════════════════════════════════════════════
#  Command line
# ═══════════════════════════════════════════════════════════════════════

def _count(minimum: int) -> Callable[[str], int]:
    def parse(text: str) -> int:
        value = int(text)
        if value < minimum:
            raise argparse.ArgumentTypeError(f"must be at least {minimum}, got {value}")
        return value
    return parse


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rube", description="Run a RUBE playfield"
    )
    parser.add_argument("program", help="RUBE source file")
    parser.add_argument("-d", "--no-display", action="store_true",
                        help="Run without the live view; output goes to stdout")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Only program output (implies -d)")
    parser.add_argument("-w", "--output", type=str, default=None,
                        help="Also write program output to this file")
    parser.add_argument("-y", "--delay", type=_count(0), default=DEFAULT_DELAY_MS,
                        help="Delay between generations in ms (default: 0)")
    parser.add_argument("-f", "--frame-skip", type=_count(1), default=1,
                        help="Redraw every Nth generation (default: 1)")
    parser.add_argument("-n", "--generations", type=_count(0), default=0,
                        help="Stop after N generations (default: run until quit)")
    parser.add_argument("-s", "--step", action="store_true",
                        help="Single-step: wait for n/Enter before each generation")
    parser.add_argument("--stats", type=str, default=None,
                        help="Write per-generation telemetry CSV to this path")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)
    if args.quiet:
        args.no_display = True
    return args


def cli(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        grid = Grid.load(args.program)
    except OSError as exc:
        print(f"rube: couldn't open '{args.program}' for input: "
              f"{exc.strerror or exc}", file=sys.stderr)
        return 1

    out_file: BinaryIO | None = None
    if args.output:
        try:
            out_file = open(args.output, "wb")
        except OSError as exc:
            print(f"rube: couldn't open '{args.output}' for output: "
                  f"{exc.strerror or exc}", file=sys.stderr)
            return 1

    logger: StatsLogger | None = None
    if args.stats:
        logger = StatsLogger(Path(args.stats))
        logger.open()

    out_line = OutputLine()
    sinks: list[OutputSink] = [StreamSink(sys.stdout.buffer) if args.no_display else out_line]
    if out_file is not None:
        sinks.append(StreamSink(out_file))
    machine = Machine(grid, sinks[0] if len(sinks) == 1 else TeeSink(*sinks))

    if not args.quiet:
        print(f"RUBE interpreter {__version__}: {args.program} "
              f"({grid.max_x + 1}x{grid.max_y + 1})", file=sys.stderr)

    try:
        if args.no_display:
            run_headless(
                machine,
                generations=args.generations,
                delay_ms=args.delay,
                ticks=sys.stdin if args.step else None,
                logger=logger,
            )
        else:
            curses.wrapper(live, machine, out_line, args, logger)
    except KeyboardInterrupt:
        pass
    finally:
        if logger is not None:
            logger.close()
        if out_file is not None:
            out_file.close()

    if not args.no_display:
        sys.stdout.buffer.write(out_line.transcript.encode(ENCODING))
        sys.stdout.flush()
    if not args.quiet:
        print(f"\n{machine.generation} generations, "
              f"{machine.emitted} outputs", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(cli())
