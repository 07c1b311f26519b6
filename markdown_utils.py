"""Markdown scanning, outline normalization and slide-structure repair."""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

try:
    from .models import CodeBlock
except Exception:
    from models import CodeBlock

FENCE_RE = re.compile(r"^( {0,3})(`{3,}|~{3,})(.*)$")
WRAPPER_RE = re.compile(r"^`{3,}\s*(markdown|md|marp)?\s*$", re.IGNORECASE)
YAML_KEY_RE = re.compile(r"^[A-Za-z_][\w-]*\s*:")
TITLE_RE = re.compile(r"^#\s+(.+)$")
R_CHUNK_RE = re.compile(r"^\{\s*[rR](?=[\s,}])")
SLIDE_BREAK = "---"

KIND_ALIASES = {
    "plot": "plot",
    "figure": "plot",
    "fig": "plot",
    "svg": "plot",
    "table": "table",
    "tab": "table",
    "text": "generic",
    "generic": "generic",
    "output": "generic",
}


class LineState(str, Enum):
    FRONTMATTER = "frontmatter"
    CODE = "code"
    TABLE = "table"
    PROSE = "prose"


@dataclass
class ScannedLine:
    index: int
    offset: int
    text: str
    state: LineState
    fence: str = ""  # "open" | "close" | ""


def _front_matter_end(lines: List[str]) -> int:
    """Index of the line closing a leading YAML block, or -1.

    Args:
        lines (List[str]):

    Returns:
        int:
    """
    if not lines or lines[0].strip() != SLIDE_BREAK:
        return -1
    for j in range(1, len(lines)):
        if lines[j].strip() == SLIDE_BREAK:
            body = [ln for ln in lines[1:j] if ln.strip()]
            if body and YAML_KEY_RE.match(body[0].strip()):
                return j
            return -1
    return -1


def scan_lines(text: str) -> List[ScannedLine]:
    """Classify every line of ``text`` by the block it belongs to.

    Args:
        text (str):

    Returns:
        List[ScannedLine]:
    """
    lines = text.split("\n")
    fm_end = _front_matter_end(lines)
    out: List[ScannedLine] = []
    offset = 0
    fence: Optional[str] = None
    for i, line in enumerate(lines):
        mark = ""
        if i <= fm_end:
            state = LineState.FRONTMATTER
        elif fence is not None:
            state = LineState.CODE
            m = FENCE_RE.match(line.rstrip())
            if m and m.group(2)[0] == fence[0] and len(m.group(2)) >= len(fence) and not m.group(3).strip():
                mark = "close"
                fence = None
        else:
            m = FENCE_RE.match(line.rstrip())
            if m and not (m.group(2)[0] == "`" and "`" in m.group(3)):
                state = LineState.CODE
                mark = "open"
                fence = m.group(2)
            elif line.lstrip().startswith("|"):
                state = LineState.TABLE
            else:
                state = LineState.PROSE
        out.append(ScannedLine(index=i, offset=offset, text=line, state=state, fence=mark))
        offset += len(line) + 1
    return out


def split_front_matter(text: str) -> Tuple[str, str]:
    """Split a leading YAML front-matter block from the body.

    Args:
        text (str):

    Returns:
        Tuple[str, str]: (front matter including delimiters, remaining body)
    """
    lines = text.split("\n")
    end = _front_matter_end(lines)
    if end < 0:
        return "", text
    return "\n".join(lines[: end + 1]), "\n".join(lines[end + 1 :])


def _strip_leading_wrapper(s: str) -> str:
    lines = s.split("\n")
    if lines and WRAPPER_RE.match(lines[0].strip()):
        return "\n".join(lines[1:])
    return s


def _strip_trailing_fence(s: str) -> str:
    scanned = scan_lines(s)
    if not scanned:
        return s
    last = scanned[-1]
    if last.fence == "open" and not last.text.strip().strip("`"):
        return "\n".join(sl.text for sl in scanned[:-1])
    return s


def _cells(row: str) -> List[str]:
    s = row.strip()
    if s.startswith("|"):
        s = s[1:]
    if s.endswith("|") and not s.endswith("\\|"):
        s = s[:-1]
    return [c.strip() for c in s.split("|")]


def _is_separator_row(row: str) -> bool:
    cells = _cells(row)
    return bool(cells) and all(re.fullmatch(r":?-+:?", c) for c in cells)


def _close_row(row: str) -> str:
    s = row.rstrip()
    if s.endswith("|") and not s.endswith("\\|"):
        return s
    return s + " |"


def repair_tables(text: str) -> str:
    """Make pipe tables parseable: closed rows, a header separator, a blank line before.

    Args:
        text (str):

    Returns:
        str:
    """
    scanned = scan_lines(text)
    out: List[str] = []
    i = 0
    while i < len(scanned):
        if scanned[i].state is not LineState.TABLE:
            out.append(scanned[i].text)
            i += 1
            continue
        j = i
        while j < len(scanned) and scanned[j].state is LineState.TABLE:
            j += 1
        run = [sl.text for sl in scanned[i:j]]
        i = j
        if len(run) < 2:
            out.extend(run)
            continue
        rows = [_close_row(r) for r in run]
        if not _is_separator_row(rows[1]):
            indent = rows[0][: len(rows[0]) - len(rows[0].lstrip())]
            ncols = len(_cells(rows[0]))
            rows.insert(1, indent + "| " + " | ".join(["---"] * ncols) + " |")
        if out and out[-1].strip():
            out.append("")
        out.extend(rows)
    return "\n".join(out)


def normalize_outline(raw: str) -> str:
    """Normalize raw model output into outline text.

    Strips a wrapping ``markdown`` fence and a dangling closing fence until
    nothing changes, trims, then repairs tables. The result is a fixpoint:
    normalizing it again returns the same string.

    Args:
        raw (str):

    Returns:
        str:
    """
    s = (raw or "").replace("\r\n", "\n").strip()
    while True:
        prev = s
        s = _strip_leading_wrapper(s).strip()
        s = _strip_trailing_fence(s).strip()
        if s == prev:
            break
    return repair_tables(s)


def find_slide_breaks(text: str) -> List[int]:
    """Offsets of slide-break lines outside code and front matter.

    Args:
        text (str):

    Returns:
        List[int]:
    """
    return [
        sl.offset
        for sl in scan_lines(text)
        if sl.state is LineState.PROSE and sl.text.strip() == SLIDE_BREAK
    ]


def repair_slide_breaks(text: str) -> str:
    """Put every slide break on its own line, padded by exactly one blank line.

    Consecutive markers collapse into one, markers before the first or after the
    last content line are dropped, and runs of blank prose lines shrink to one.

    Args:
        text (str):

    Returns:
        str:
    """
    out: List[str] = []
    pending_break = False
    has_content = False
    for sl in scan_lines(text):
        is_prose = sl.state is LineState.PROSE
        if is_prose and sl.text.strip() == SLIDE_BREAK:
            pending_break = True
            continue
        if is_prose and not sl.text.strip():
            if pending_break or not out or out[-1] == "":
                continue
            out.append("")
            continue
        if pending_break:
            if has_content:
                while out and out[-1] == "":
                    out.pop()
                out.extend(["", SLIDE_BREAK, ""])
            pending_break = False
        out.append(sl.text)
        if sl.state is not LineState.FRONTMATTER:
            has_content = True
    while out and out[-1] == "":
        out.pop()
    return "\n".join(out)


def chunk_kind(info: str) -> Optional[str]:
    """Kind declared in an R chunk header such as ``{r table}`` or ``{r, kind="plot"}``.

    Args:
        info (str):

    Returns:
        Optional[str]:
    """
    inner = info.strip()
    if not R_CHUNK_RE.match(inner):
        return None
    inner = inner.strip("{} \t")[1:]
    parts = [p.strip() for p in inner.split(",")]
    if parts and parts[0]:
        label = parts[0].split()[0].lower()
        if "=" not in label and label in KIND_ALIASES:
            return KIND_ALIASES[label]
    for p in parts:
        if "=" not in p:
            continue
        key, value = [x.strip() for x in p.split("=", 1)]
        if key.lower() in {"kind", "type"}:
            value = value.strip("'\"").lower()
            if value in KIND_ALIASES:
                return KIND_ALIASES[value]
    return None


def extract_code_blocks(text: str) -> List[CodeBlock]:
    """Fenced code blocks in document order; unclosed fences are ignored.

    Args:
        text (str):

    Returns:
        List[CodeBlock]:
    """
    blocks: List[CodeBlock] = []
    opener: Optional[ScannedLine] = None
    body: List[str] = []
    for sl in scan_lines(text):
        if sl.fence == "open":
            opener = sl
            body = []
        elif sl.fence == "close" and opener is not None:
            m = FENCE_RE.match(opener.text.rstrip())
            info = m.group(3).strip() if m else ""
            statistical = bool(R_CHUNK_RE.match(info))
            blocks.append(
                CodeBlock(
                    language="statistical" if statistical else "other",
                    raw_source="\n".join(body),
                    info=info,
                    kind=chunk_kind(info) if statistical else None,
                    start=opener.offset,
                    end=sl.offset + len(sl.text),
                )
            )
            opener = None
        elif opener is not None:
            body.append(sl.text)
    return blocks


def extract_title(markdown: str) -> str:
    """Extract title.

    Args:
        markdown (str):

    Returns:
        str:
    """
    for sl in scan_lines(markdown or ""):
        if sl.state is not LineState.PROSE:
            continue
        m = TITLE_RE.match(sl.text.strip())
        if m:
            return m.group(1).strip()
    return "Research Results"


def create_summary(markdown: str, max_length: int = 150) -> str:
    """Create a plain-text summary of markdown content.

    Args:
        markdown (str):
        max_length (int):

    Returns:
        str:
    """
    s = markdown or ""
    s = re.sub(r"```[\s\S]*?```", "", s)
    s = re.sub(r"#+\s+", "", s)
    s = re.sub(r"\*\*|__", "", s)
    s = re.sub(r"\*|_", "", s)
    s = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", s)
    s = re.sub(r"`([^`]+)`", r"\1", s)
    s = re.sub(r"\n\s*\n", "\n", s).strip()
    if len(s) <= max_length:
        return s
    return s[:max_length].strip() + "..."
