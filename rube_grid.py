"""
The RUBE arena: a fixed-size buffer of symbol codes plus the bounding box
of the loaded program.

Cells are stored as ``numpy.uint8`` codes (one byte per cell, latin-1).
Reads go through ``neighbor`` / ``Grid.around``, which resolve anything
outside the arena to a blank cell.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator

import numpy as np
from numpy.typing import NDArray

from rube_cells import BLANK, crate_mask

ARENA_WIDTH = 80
ARENA_HEIGHT = 50

BLANK_CODE = ord(BLANK)

Neighborhood = Callable[[int, int], str]


class Grid:
    """One buffer of the double-buffered playfield.

    ``max_x`` / ``max_y`` are inclusive: generations evaluate every cell
    with ``0 <= x <= max_x`` and ``0 <= y <= max_y``.
    """

    def __init__(
        self,
        width: int = ARENA_WIDTH,
        height: int = ARENA_HEIGHT,
        max_x: int = 0,
        max_y: int = 0,
    ) -> None:
        if width < 1 or height < 1:
            raise ValueError(f"arena must be at least 1x1, got {width}x{height}")
        self.width: int = width
        self.height: int = height
        self.max_x: int = max(0, min(max_x, width - 1))
        self.max_y: int = max(0, min(max_y, height - 1))
        self.cells: NDArray[np.uint8] = np.full(
            (height, width), BLANK_CODE, dtype=np.uint8
        )
        # Row strings for fast neighbour reads (invalidated on every write)
        self._rows: tuple[str, ...] | None = None

    # ── Loading ─────────────────────────────────────────────────────

    @classmethod
    def from_text(
        cls,
        text: str,
        width: int = ARENA_WIDTH,
        height: int = ARENA_HEIGHT,
    ) -> Grid:
        """Lay program text into a fresh arena, one character per cell.

        A newline starts the next row; rows longer than the arena wrap;
        anything past the last row is dropped. The bounding box is the
        longest row length by the last row reached.
        """
        grid = cls(width, height)
        data = text.encode("latin-1", errors="replace")
        x = y = 0
        max_x = 0
        for code in data:
            if code == 0x0A:
                x = 0
                y += 1
            else:
                grid.cells[y, x] = code
                x += 1
                max_x = max(max_x, x)
                if x >= width:
                    x = 0
                    y += 1
            if y >= height:
                break
        grid.max_x = min(max_x, width - 1)
        grid.max_y = min(y, height - 1)
        return grid

    @classmethod
    def load(
        cls,
        path: str | Path,
        width: int = ARENA_WIDTH,
        height: int = ARENA_HEIGHT,
    ) -> Grid:
        """Read a program file. Raises ``OSError`` if it cannot be read."""
        return cls.from_text(
            Path(path).read_text(encoding="latin-1"), width, height
        )

    # ── Cell access ─────────────────────────────────────────────────

    def in_arena(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get(self, x: int, y: int) -> str:
        if not self.in_arena(x, y):
            return BLANK
        return chr(self.cells[y, x])

    def set(self, x: int, y: int, symbol: str) -> None:
        """Write a symbol; writes that land outside the arena are dropped."""
        if not self.in_arena(x, y):
            return
        self.cells[y, x] = ord(symbol)
        self._rows = None

    def text_rows(self) -> tuple[str, ...]:
        """Whole-arena rows as strings, cached until the next write."""
        if self._rows is None:
            self._rows = tuple(
                row.tobytes().decode("latin-1") for row in self.cells
            )
        return self._rows

    def around(self, x: int, y: int) -> Neighborhood:
        """Reader for offsets relative to ``(x, y)``."""
        rows = self.text_rows()
        w, h = self.width, self.height

        def at(dx: int, dy: int) -> str:
            nx, ny = x + dx, y + dy
            if 0 <= nx < w and 0 <= ny < h:
                return rows[ny][nx]
            return BLANK

        return at

    def coords(self) -> Iterator[tuple[int, int]]:
        """Bounding-box coordinates in evaluation order (column by column)."""
        for x in range(self.max_x + 1):
            for y in range(self.max_y + 1):
                yield x, y

    # ── Buffers ─────────────────────────────────────────────────────

    def copy(self) -> Grid:
        other = Grid(self.width, self.height, self.max_x, self.max_y)
        np.copyto(other.cells, self.cells)
        return other

    def copy_into(self, other: Grid) -> Grid:
        """Overwrite ``other`` with this grid's contents and box."""
        if other.cells.shape != self.cells.shape:
            raise ValueError(
                f"arena mismatch: {other.cells.shape} vs {self.cells.shape}"
            )
        np.copyto(other.cells, self.cells)
        other.max_x = self.max_x
        other.max_y = self.max_y
        other._rows = None
        return other

    # ── Snapshots ───────────────────────────────────────────────────

    def region(self) -> NDArray[np.uint8]:
        """Read-only view of the bounding box (rows by columns)."""
        view = self.cells[: self.max_y + 1, : self.max_x + 1].view()
        view.flags.writeable = False
        return view

    def rows(self) -> list[str]:
        """Bounding-box rows, non-printable codes shown as spaces."""
        out: list[str] = []
        for row in self.text_rows()[: self.max_y + 1]:
            out.append(
                "".join(c if c.isprintable() else BLANK for c in row[: self.max_x + 1])
            )
        return out

    def lines(self) -> list[str]:
        """``rows()`` with trailing blanks and trailing empty rows removed."""
        out = [row.rstrip() for row in self.rows()]
        while out and not out[-1]:
            out.pop()
        return out

    def crate_count(self) -> int:
        return int(crate_mask(self.region()).sum())

    def digest(self) -> int:
        return hash(self.region().tobytes())

    def __repr__(self) -> str:
        return (
            f"Grid({self.width}x{self.height}, "
            f"box={self.max_x + 1}x{self.max_y + 1})"
        )


def neighbor(grid: Grid, x: int, y: int, dx: int, dy: int) -> str:
    """Symbol at ``(x + dx, y + dy)``, blank outside the arena."""
    return grid.get(x + dx, y + dy)
