import pytest

from rube_engine import BLANK_RULES, CRATE_RULES, Machine, step
from rube_grid import Grid
from rube_io import BufferSink


def program(*rows: str, **arena) -> Grid:
    return Grid.from_text("\n".join(rows), **arena)


def after(grid: Grid, generations: int = 1, sink=None) -> list[str]:
    for _ in range(generations):
        grid = step(grid, sink)
    return grid.lines()


# ── Gravity ─────────────────────────────────────────────────────────────

def test_settled_stack_is_a_fixed_point():
    grid = program("1", "2", "3", "=")
    assert after(grid) == ["1", "2", "3", "="]


def test_settled_pair_of_columns_is_a_fixed_point():
    grid = program("12", "34", "==")
    nxt = step(grid)
    assert (nxt.cells == grid.cells).all()


def test_crate_falls_one_row_per_generation():
    grid = program("1", "", "", "=")
    seen = []
    for _ in range(3):
        grid = step(grid)
        seen.append([y for y in range(4) if grid.get(0, y) == "1"])
    assert seen == [[1], [2], [2]]


def test_crate_falls_off_the_bottom_of_the_arena():
    grid = program("=", "1", width=2, height=2)
    assert after(grid) == ["="]


# ── Arena edges ─────────────────────────────────────────────────────────

def test_door_walks_off_the_right_edge():
    # Full-width rows wrap on their own; a newline would add an empty row
    grid = Grid.from_text("=(==", width=2, height=2)
    assert after(grid) == ["=", "=="]


@pytest.mark.parametrize("text", ["W(MAKV)1+", "O:.~b-F*C", "M1W1A1V1("])
def test_edge_cells_never_fault(text):
    grid = Grid.from_text(text, width=3, height=3)
    nxt = step(grid)
    assert (nxt.max_x, nxt.max_y) == (2, 2)


def test_unknown_symbols_pass_through():
    grid = program("?z&#", "====")
    assert after(grid) == ["?z&#", "===="]


# ── ALU ─────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("a, b, expected", [("3", "9", "c"), ("f", "2", "1"), ("0", "0", "0")])
def test_adder_packs_two_crates(a, b, expected):
    grid = program(" +", f" {a}{b}", "===")
    assert after(grid) == [" +", expected, "==="]


@pytest.mark.parametrize("a, b, expected", [("3", "9", "6"), ("9", "3", "a"), ("5", "5", "0")])
def test_subtractor_takes_near_from_far(a, b, expected):
    grid = program(" -", f" {a}{b}", "===")
    assert after(grid) == [" -", expected, "==="]


def test_adder_on_the_left():
    grid = program(" +", "93", "===")
    assert after(grid) == [" +", "  c", "==="]


# ── Doors ───────────────────────────────────────────────────────────────

def test_door_moves_along_support():
    assert after(program("( ", "==")) == [" (", "=="]
    assert after(program(" )", "==")) == [")", "=="]


def test_doors_collide_and_vanish():
    assert after(program("( )", "===")) == ["", "==="]


def test_door_reverses_at_a_block():
    assert after(program("(=", "==")) == [")=", "=="]
    assert after(program("=)", "==")) == ["=(", "=="]


def test_door_falls_when_unsupported():
    assert after(program("(", "", "=")) == ["", "(", "="]


def test_door_pushes_crate_run_toward_the_gap():
    grid = program("(12", "=====")
    assert after(grid) == [" (12", "====="]
    assert after(grid, 2) == ["  (12", "====="]


def test_right_door_pushes_crate_run_leftward():
    grid = program("  21)", "=====")
    assert after(grid) == [" 21)", "====="]


def test_door_reverses_against_a_jammed_run():
    grid = program("(12=", "====")
    assert after(grid) == [")12=", "===="]


def test_pivot_turns_a_door_and_is_spent():
    grid = program(" (*", "===")
    assert after(grid) == [" )*", "==="]
    assert after(grid, 2) == [")", "==="]


# ── Winches and swinches ────────────────────────────────────────────────

def test_w_winch_lifts_crate_two_cells_diagonally():
    grid = program("   ", " W ", "  1", "===")
    assert after(grid) == ["1", " W", "", "==="]


def test_m_winch_lowers_crate_two_cells_diagonally():
    grid = program("  1", " M=", "   ", "===")
    assert after(grid) == ["", " M=", "1", "==="]


def test_v_swinch_raises_crate_and_flips():
    grid = program("   ", " V1", "===")
    assert after(grid) == ["1", " A", "==="]


def test_a_swinch_lowers_crate_and_flips():
    grid = program("1A", "==")
    assert after(grid) == [" V", "==1"]


@pytest.mark.parametrize("rows, expected", [
    (("   ", " W ", "  1", "   ", "==="), ["1", " W", "", "", "==="]),
    (("  1", " M ", "   ", "==="), ["", " M", "1", "==="]),
    (("   ", " V1", "   ", "==="), ["1", " A", "", "==="]),
])
def test_hanging_crate_is_moved_not_copied(rows, expected):
    grid = program(*rows)
    assert grid.crate_count() == 1
    nxt = step(grid)
    assert nxt.lines() == expected
    assert nxt.crate_count() == 1


def test_port_beside_a_crate_flips_like_a_swinch():
    grid = program("1O", "==")
    assert after(grid) == ["1V", "=="]


# ── Comparator, shifters, copiers ───────────────────────────────────────

def test_comparator_passes_smaller_crate_left():
    grid = program(" 3", " K", " 5", "==")
    assert after(grid) == ["", " K", "35", "=="]


def test_comparator_passes_larger_or_equal_crate_right():
    grid = program(" 7", " K", " 5", "==")
    assert after(grid) == ["", " K", " 57", "=="]


@pytest.mark.parametrize("under, expected", [
    # '~' ranks above every crate, so the '3' goes left
    ("~", ["", " K", "3~~", "=="]),
    # '=' ranks below every crate, so the '3' goes right
    ("=", ["", " K", " =3", "=="]),
])
def test_comparator_ranks_other_symbols_by_letter_offset(under, expected):
    grid = program(" 3", " K", f" {under}", "==")
    assert after(grid) == expected


def test_shift_right_and_left():
    assert after(program("1", ">=")) == [" 1", ">="]
    assert after(program(" 1", "=<")) == ["1", "=<"]


def test_colon_copies_whatever_is_above():
    assert after(program("=", ":", "", "=")) == ["=", ":", "=", "="]


def test_semicolon_copies_only_crates():
    assert after(program("=", ";", "", "=")) == ["=", ";", "", "="]
    assert after(program("4", ";", "", "=")) == ["4", ";", "4", "="]


def test_elevator_lifts_crate_copy():
    grid = Grid.from_text("\n.\n7\n=")
    assert after(grid) == ["7", ".", "7", "="]


def test_spreader_flows_down_and_along_support():
    assert after(program("~ ", "=")) == ["~~", "="]
    assert after(program("~ ", " ")) == ["~", "~"]


# ── Ports ───────────────────────────────────────────────────────────────

def test_port_emits_number_once_and_consumes_crates():
    sink = BufferSink()
    grid = program("1", "0", "O", "b", "=")
    grid = step(grid, sink)
    assert sink.events == [("number", 16)]
    assert grid.lines() == ["", "", "O", "b", "="]
    grid = step(grid, sink)
    assert sink.values == [16]


def test_port_emits_character():
    sink = BufferSink()
    step(program("4", "1", "O", "c", "="), sink)
    assert sink.events == [("char", 65)]
    assert sink.text == "A"


def test_untagged_port_still_consumes_crates():
    sink = BufferSink()
    grid = step(program("1", "0", "O", "="), sink)
    assert sink.events == []
    assert grid.lines() == ["", "", "O", "="]


def test_ports_fire_in_column_order():
    sink = BufferSink()
    step(program("46", "89", "OO", "cc", "=="), sink)
    assert sink.text == "Hi"


# ── Destroyers ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("rows, crate", [
    (("C1", "=="), (1, 0)),
    (("1C", "=="), (0, 0)),
    (("C", "1", "="), (0, 1)),
    (("1", "C"), (0, 0)),
])
def test_crusher_blanks_adjacent_crates(rows, crate):
    grid = step(program(*rows))
    assert grid.get(*crate) == " "
    assert "C" in "".join(grid.lines())


def test_crusher_spares_other_cells():
    assert after(program("C=", "==")) == ["C=", "=="]


def test_furnace_blanks_anything_adjacent():
    assert after(program("F=", "==")) == ["F", " ="]


# ── Contract ────────────────────────────────────────────────────────────

def test_step_reads_but_never_writes_current():
    grid = program("(12", "=====", "1", "0", "O", "b")
    before = grid.cells.copy()
    step(grid)
    assert (grid.cells == before).all()


def test_step_refuses_to_write_into_its_input():
    grid = program("1")
    with pytest.raises(ValueError):
        step(grid, out=grid)


def test_step_is_deterministic():
    grid = program(" 7  3", " 5 +2", "(12 ab", "=====>=", "", "F 1 C")
    first, second = BufferSink(), BufferSink()
    a, b = step(grid, first), step(grid, second)
    assert (a.cells == b.cells).all()
    assert first.events == second.events


def test_rule_tables_are_ordered_tuples():
    assert BLANK_RULES[0].__name__ == "_falls_in"
    assert BLANK_RULES[-1].__name__ == "_pushed_in"
    assert CRATE_RULES[0].__name__ == "_unsupported"


# ── Machine ─────────────────────────────────────────────────────────────

def test_machine_swaps_buffers_and_counts():
    sink = BufferSink()
    machine = Machine(program("1", "0", "O", "b", "="), sink)
    first = machine.current
    assert machine.advance() == "output"
    assert machine.current is not first
    assert machine.generation == 1
    assert machine.emitted == 1
    assert machine.advance() == "settled"
    assert machine.settled
    assert machine.current is first
    assert sink.values == [16]


def test_machine_tracks_crates():
    machine = Machine(program("1", "", "=", "", "2"))
    assert machine.crates() == 2
    machine.advance()
    # '2' sits on the last row of the box with nothing beneath it
    assert machine.crates() == 1
    assert len(machine.crate_history) == 2


def test_machine_detects_a_falling_crate_is_not_settled():
    machine = Machine(program("1", "", "", "", "="))
    machine.advance()
    assert machine.cycle_period == 0
    assert not machine.settled
