"""Merge per-segment result tables and write them out as CSV."""

from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import Iterable, List, Union

from .client import ResultTable


def assemble(tables: Iterable[ResultTable]) -> ResultTable:
    """Concatenate tables in the given order.

    The first non-empty header list wins. Later tables are assumed to share
    it and are not checked.
    """
    headers: List[str] = []
    rows: List[List[str]] = []
    for table in tables:
        if not headers and table.headers:
            headers = list(table.headers)
        rows.extend(table.rows)
    return ResultTable(headers=headers, rows=rows)


def write_csv(table: ResultTable, path: Union[str, Path]) -> Path:
    destination = Path(path)
    if destination.parent and not destination.parent.exists():
        destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = destination.with_name(destination.name + ".part")
    with open(tmp_path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
        writer.writerow(table.headers)
        writer.writerows(table.rows)
    os.replace(tmp_path, destination)
    return destination
