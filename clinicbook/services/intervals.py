"""Interval arithmetic on minutes since midnight.

All scheduling intervals within one calendar date are half-open ``(start, end)``
pairs of integer minutes, ``0 <= start < end < 1440``.
"""
from datetime import time

Interval = tuple[int, int]


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def overlaps(a: Interval, b: Interval) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def find_overlaps(intervals: list[Interval]) -> list[tuple[Interval, Interval]]:
    """Pairs of intervals that share at least one minute (touching ends do not count)."""
    ordered = sorted(intervals)
    return [
        (ordered[i], ordered[j])
        for i in range(len(ordered))
        for j in range(i + 1, len(ordered))
        if overlaps(ordered[i], ordered[j])
    ]


def merge_intervals(intervals: list[Interval]) -> list[Interval]:
    """Union of the given intervals, sorted; overlapping or adjacent ones are joined."""
    merged: list[Interval] = []
    for start, end in sorted(i for i in intervals if i[0] < i[1]):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def subtract_interval(interval: Interval, block: Interval) -> list[Interval]:
    """Remove ``block`` from ``interval``; yields zero, one or two pieces."""
    start, end = interval
    if not overlaps(interval, block):
        return [interval]
    pieces = []
    if block[0] > start:
        pieces.append((start, block[0]))
    if block[1] < end:
        pieces.append((block[1], end))
    return pieces


def subtract_intervals(intervals: list[Interval], blocks: list[Interval]) -> list[Interval]:
    remaining = list(intervals)
    for block in blocks:
        remaining = [piece for interval in remaining for piece in subtract_interval(interval, block)]
    return sorted(remaining)


def chunk_interval(interval: Interval, duration: int) -> list[Interval]:
    """Back-to-back chunks of ``duration`` from the interval start; a short tail is dropped."""
    start, end = interval
    return [(s, s + duration) for s in range(start, end - duration + 1, duration)]
