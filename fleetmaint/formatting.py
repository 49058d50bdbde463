from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

from rich.console import Console
from rich.table import Table

console = Console()

PLACEHOLDER = "-"


@dataclass(frozen=True)
class Column:
    header: str
    key: str
    no_wrap: bool = False
    justify: str = "left"


def styled(text: str, style: Optional[str]) -> str:
    return f"[{style}]{text}[/{style}]" if style else text


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def build_table(title: str, columns: Sequence[Column], rows: Iterable[Mapping[str, Any]],
                styles: Optional[Mapping[str, str]] = None, style_key: Optional[str] = None) -> Table:
    """
    Build a rich Table from row mappings. When `style_key` is given, the cell in that
    column is colored by looking its text up in `styles`.
    """
    table = Table(title=title)
    for col in columns:
        table.add_column(col.header, no_wrap=col.no_wrap, justify=col.justify)
    for row in rows:
        cells = []
        for col in columns:
            text = _cell(row.get(col.key))
            if styles and col.key == style_key:
                text = styled(text, styles.get(text))
            cells.append(text)
        table.add_row(*cells)
    return table


def print_table(title: str, columns: Sequence[Column], rows: Iterable[Mapping[str, Any]],
                styles: Optional[Mapping[str, str]] = None, style_key: Optional[str] = None) -> None:
    console.print(build_table(title, columns, rows, styles, style_key))


def print_json_data(data: Any, output: Optional[str] = None) -> None:
    """Pretty JSON to stdout when output is None or '-', otherwise write it to that path."""
    text = json.dumps(data, indent=2, default=str)
    if output in (None, "", "-"):
        console.print_json(text)
        return
    with open(output, "w", encoding="utf-8") as f:
        f.write(text + "\n")


def fmt_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return PLACEHOLDER
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def fmt_ts(dt: Optional[datetime]) -> str:
    if dt is None:
        return PLACEHOLDER
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")
