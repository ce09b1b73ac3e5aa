"""Plain-text formatting helpers for report artifacts."""

from __future__ import annotations

from typing import Sequence


def format_bytes(num: float) -> str:
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB"]
    value = float(num)
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}"
        value /= 1024
    return f"{value:.1f} TiB"


def format_block_size(num: int) -> str:
    if num >= 1024 * 1024 and num % (1024 * 1024) == 0:
        return f"{num // (1024 * 1024)}M"
    if num >= 1024 and num % 1024 == 0:
        return f"{num // 1024}K"
    return str(num)


def format_value(value: float) -> str:
    """Two decimals, dropping them for whole numbers."""
    if float(value).is_integer():
        return f"{int(value)}"
    return f"{value:.2f}"


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = []
    lines.append(_format_row(headers, widths))
    lines.append(_format_row(["-" * w for w in widths], widths))
    for row in rows:
        lines.append(_format_row(row, widths))
    return "\n".join(lines)


def section(title: str) -> str:
    return f"{title}\n{'=' * len(title)}"


def _format_row(row: Sequence[str], widths: Sequence[int]) -> str:
    padded = [cell.ljust(width) for cell, width in zip(row, widths)]
    return " | ".join(padded).rstrip()
