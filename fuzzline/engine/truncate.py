"""Bound display lines to the window width.

Truncated lines carry ``..`` markers, their matched indices are remapped to
the truncated string and the full line is kept in the truncated map under its
1-based line number.
"""

from typing import Dict, List, Optional, Sequence, Tuple

DOTS = ".."


def _truncate_body(body: str, indices: List[int], width: int) -> Tuple[str, List[int]]:
    if width <= len(DOTS):
        return body[:max(width, 0)], [i for i in indices if i < width]

    avail = width - len(DOTS)
    if not indices or indices[-1] < avail:
        return body[:avail] + DOTS, [i for i in indices if i < avail]

    # Show a window starting at the first match, as far as the line allows.
    start = min(indices[0], len(body) - avail)
    if start <= 0:
        return body[:avail] + DOTS, [i for i in indices if i < avail]
    end = start + avail
    tail = ""
    if end < len(body) and avail > len(DOTS):
        end -= len(DOTS)
        tail = DOTS
    shifted = [i - start + len(DOTS) for i in indices if start <= i < end]
    return DOTS + body[start:end] + tail, shifted


def truncate_line(
    line: str,
    indices: Sequence[int],
    winwidth: int,
    skipped: int = 0,
) -> Optional[Tuple[str, List[int]]]:
    """Truncate one line, or return ``None`` if it already fits.

    The first ``skipped`` columns (icon decoration) are kept verbatim and not
    counted as content.
    """
    if len(line) <= winwidth:
        return None

    prefix, body = line[:skipped], line[skipped:]
    head = [i for i in indices if i < skipped]
    body_indices = sorted(i - skipped for i in indices if i >= skipped)
    truncated, remapped = _truncate_body(body, body_indices, winwidth - len(prefix))
    return prefix + truncated, head + [i + len(prefix) for i in remapped]


def truncate_long_matched_lines(
    lines: Sequence[str],
    indices: Sequence[Sequence[int]],
    winwidth: int,
    skipped: Optional[int] = None,
) -> Tuple[List[str], List[List[int]], Dict[int, str]]:
    """Truncate every line wider than ``winwidth``.

    Returns the display lines, their remapped indices and the truncated map
    from 1-based line number to the original line. Lines that fit are
    returned unchanged and get no map entry.
    """
    out_lines: List[str] = []
    out_indices: List[List[int]] = []
    truncated_map: Dict[int, str] = {}

    for lnum, (line, idxs) in enumerate(zip(lines, indices), start=1):
        truncated = truncate_line(line, idxs, winwidth, skipped or 0)
        if truncated is None:
            out_lines.append(line)
            out_indices.append(list(idxs))
        else:
            out_lines.append(truncated[0])
            out_indices.append(truncated[1])
            truncated_map[lnum] = line

    return out_lines, out_indices, truncated_map
