from datetime import time

from clinicbook.services.intervals import (
    chunk_interval,
    find_overlaps,
    from_minutes,
    merge_intervals,
    subtract_interval,
    subtract_intervals,
    to_minutes,
)


def test_minutes_conversion():
    assert to_minutes(time(9, 30)) == 570
    assert from_minutes(570) == time(9, 30)
    assert from_minutes(to_minutes(time(23, 59))) == time(23, 59)


def test_merge_joins_overlapping_and_adjacent():
    assert merge_intervals([(600, 660), (540, 600), (630, 700), (800, 900)]) == [(540, 700), (800, 900)]


def test_merge_drops_empty_intervals():
    assert merge_intervals([(600, 600), (700, 650)]) == []


def test_subtract_interval_splits_in_two():
    assert subtract_interval((540, 720), (600, 630)) == [(540, 600), (630, 720)]


def test_subtract_interval_trims_edges():
    assert subtract_interval((540, 720), (500, 600)) == [(600, 720)]
    assert subtract_interval((540, 720), (700, 800)) == [(540, 700)]
    assert subtract_interval((540, 720), (0, 1440)) == []


def test_subtract_interval_touching_block_is_noop():
    assert subtract_interval((540, 600), (600, 630)) == [(540, 600)]


def test_subtract_intervals_multiple_blocks():
    assert subtract_intervals([(540, 720)], [(570, 600), (660, 690)]) == [(540, 570), (600, 660), (690, 720)]


def test_chunk_drops_short_tail():
    assert chunk_interval((540, 640), 30) == [(540, 570), (570, 600), (600, 630)]
    assert chunk_interval((540, 560), 30) == []


def test_find_overlaps_ignores_touching():
    assert find_overlaps([(540, 600), (600, 660)]) == []
    assert find_overlaps([(540, 620), (600, 660)]) == [((540, 620), (600, 660))]
