"""Shape ranked results into the JSON output contract."""

import json
from typing import Any, Dict, Sequence

import click

from .icon import ICON_WIDTH
from .models import FilterContext, FilterResult, Snapshot
from .truncate import truncate_long_matched_lines


def println_json(payload: Dict[str, Any]) -> None:
    """Write one JSON record per line to stdout."""
    click.echo(json.dumps(payload, ensure_ascii=False))


def decorate_results(
    results: Sequence[FilterResult],
    total: int,
    context: FilterContext,
) -> Snapshot:
    """Apply the result cap, icons and truncation to ranked results.

    ``total`` is reported as given, independent of the cap and of truncation.
    """
    shown = results[: context.number] if context.number is not None else results

    lines = []
    indices = []
    for result in shown:
        if context.icon_painter is not None:
            line, idxs = context.icon_painter.paint_with_indices(result.text, result.indices)
        else:
            line, idxs = result.text, list(result.indices)
        lines.append(line)
        indices.append(idxs)

    truncated_map = {}
    if context.winwidth is not None:
        lines, indices, truncated_map = truncate_long_matched_lines(
            lines,
            indices,
            context.winwidth,
            ICON_WIDTH if context.enable_icon else None,
        )

    return Snapshot(total=total, lines=lines, indices=indices, truncated_map=truncated_map)
