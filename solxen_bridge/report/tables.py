"""Plain-text tables for operator output (status, end-of-run summary)."""

from __future__ import annotations

from typing import Iterable


def format_table(rows: Iterable[tuple[str, object]], *, header: tuple[str, str] = ("Metric", "Value")) -> str:
    rows = [(str(label), str(value)) for label, value in rows]
    label_w = max([len(header[0])] + [len(label) for label, _ in rows])
    value_w = max([len(header[1])] + [len(value) for _, value in rows])
    border = "+" + "-" * (label_w + 2) + "+" + "-" * (value_w + 2) + "+"
    lines = [border, f"| {header[0]:<{label_w}} | {header[1]:<{value_w}} |", border]
    for label, value in rows:
        lines.append(f"| {label:<{label_w}} | {value:<{value_w}} |")
    lines.append(border)
    return "\n".join(lines)
