"""Extract checkbox task lines from document text.

A task line reads::

    <indent><bullet> [ |x] <content> [@<date> | due <date>] [<!-- task-id:<id> -->]

The scanner walks each line once: bullet -> checkbox -> body, then pulls the
correlation marker out of the body and finally splits off a trailing date
expression. Parsing is idempotent: the rewritten text carries the minted
identities and an ISO due date, so parsing it again yields the same mentions.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from docket.core.dates import reference_day, resolve_date
from docket.models import InlineTaskMention

MARKER_OPEN = "<!--"
MARKER_CLOSE = "-->"
MARKER_KEY = "task-id:"
BULLETS = "-*+"
FENCES = ("```", "~~~")

IdFactory = Callable[[], str]


@dataclass
class ParseResult:
    """Mentions found in a text plus the text annotated with task-id markers."""

    mentions: list[InlineTaskMention] = field(default_factory=list)
    text: str = ""
    # ids generated during this parse (lines that carried no usable marker)
    minted: list[str] = field(default_factory=list)


@dataclass
class TaskLine:
    """The structural pieces of one checkbox line."""

    indent: str
    bullet: str
    checked: bool
    body: str


def new_task_id() -> str:
    return str(uuid.uuid4())


def format_marker(inline_id: str) -> str:
    return f"{MARKER_OPEN} {MARKER_KEY}{inline_id} {MARKER_CLOSE}"


def scan_task_line(line: str) -> Optional[TaskLine]:
    """Return the pieces of a checkbox line, or None for any other line."""
    n = len(line)
    i = 0
    while i < n and line[i] in " \t":
        i += 1
    indent = line[:i]
    if i >= n or line[i] not in BULLETS:
        return None
    bullet = line[i]
    i += 1
    while i < n and line[i] in " \t":
        i += 1
    if i + 2 >= n or line[i] != "[" or line[i + 2] != "]":
        return None
    state = line[i + 1]
    if state not in " xX":
        return None
    i += 3
    if i >= n or line[i] not in " \t":
        return None
    return TaskLine(indent=indent, bullet=bullet, checked=state in "xX", body=line[i:].strip())


def extract_markers(text: str) -> tuple[str, list[str]]:
    """Remove task-id comments from text. Returns (clean text, ids in order).

    Other HTML comments are kept. Whitespace touching a removed marker is
    collapsed; the rest of the spacing is preserved.
    """
    ids: list[str] = []
    pieces: list[str] = []
    piece_start = 0
    pos = 0
    while True:
        start = text.find(MARKER_OPEN, pos)
        if start < 0:
            break
        close = text.find(MARKER_CLOSE, start + len(MARKER_OPEN))
        if close < 0:
            break
        pos = close + len(MARKER_CLOSE)
        inner = text[start + len(MARKER_OPEN) : close].strip()
        value = inner[len(MARKER_KEY) :].strip()
        if not inner.startswith(MARKER_KEY) or not value:
            continue
        ids.append(value)
        pieces.append(text[piece_start:start])
        piece_start = pos
    if not ids:
        return text, ids
    pieces.append(text[piece_start:])
    trimmed = [pieces[0].rstrip()] + [p.strip() for p in pieces[1:]]
    return " ".join(p for p in trimmed if p), ids


def strip_markers(text: str) -> str:
    """Return text with every task-id marker removed (for display)."""
    return "\n".join(extract_markers(line)[0] for line in text.split("\n"))


def _tokens(text: str) -> list[tuple[int, int]]:
    """Return (start, end) offsets of whitespace-separated tokens."""
    spans = []
    i = 0
    n = len(text)
    while i < n:
        while i < n and text[i].isspace():
            i += 1
        if i >= n:
            break
        j = i
        while j < n and not text[j].isspace():
            j += 1
        spans.append((i, j))
        i = j
    return spans


def split_date(body: str, reference: date) -> tuple[str, Optional[str], Optional[date]]:
    """Split a task body into (content, raw date token, resolved date).

    ``@`` always consumes the delimiter: the first ``@`` token whose tail
    resolves wins, otherwise the last ``@`` token is taken as an
    unrecognized date. ``due`` only splits when its tail resolves.
    """
    spans = _tokens(body)

    at_spans = [(s, e) for s, e in spans if body[s] == "@" and e - s > 1]
    for s, _ in at_spans:
        token = body[s + 1 :].strip()
        resolved = resolve_date(token, reference)
        if resolved is not None:
            return body[:s].strip(), token, resolved
    if at_spans:
        s = at_spans[-1][0]
        return body[:s].strip(), body[s + 1 :].strip(), None

    for s, e in spans:
        if body[s:e].lower() != "due":
            continue
        token = body[e:].strip()
        resolved = resolve_date(token, reference) if token else None
        if resolved is not None:
            return body[:s].strip(), token, resolved

    return body.strip(), None, None


def render_task_line(
    line: TaskLine,
    content: str,
    date_token: Optional[str],
    due_date: Optional[date],
    inline_id: str,
) -> str:
    """Render a canonical task line carrying its correlation marker."""
    parts = [f"{line.indent}{line.bullet} [{'x' if line.checked else ' '}] {content}"]
    if due_date is not None:
        parts.append(f"@{due_date.isoformat()}")
    elif date_token:
        parts.append(f"@{date_token}")
    parts.append(format_marker(inline_id))
    return " ".join(parts)


def parse_tasks(
    text: str,
    reference: Optional[date] = None,
    id_factory: Optional[IdFactory] = None,
) -> ParseResult:
    """Extract task mentions from text and annotate each with its task-id.

    Lines that are not tasks, lines inside fenced code blocks and task lines
    whose content is empty are copied through untouched.
    """
    today = reference or reference_day()
    make_id = id_factory or new_task_id
    mentions: list[InlineTaskMention] = []
    seen: set[str] = set()
    minted: list[str] = []
    out: list[str] = []
    offset = 0
    in_fence = False

    for raw in text.split("\n"):
        start = offset
        offset += len(raw) + 1
        line = raw[:-1] if raw.endswith("\r") else raw
        eol = raw[len(line) :]

        if line.lstrip().startswith(FENCES):
            in_fence = not in_fence
            out.append(raw)
            continue
        task_line = None if in_fence else scan_task_line(line)
        if task_line is None:
            out.append(raw)
            continue

        body, ids = extract_markers(task_line.body)
        content, date_token, due = split_date(body, today)
        if not content:
            out.append(raw)
            continue

        inline_id = next((i for i in ids if i not in seen), None)
        if inline_id is None:
            inline_id = make_id()
            minted.append(inline_id)
        seen.add(inline_id)
        mentions.append(
            InlineTaskMention(
                inline_id=inline_id,
                content=content,
                completed=task_line.checked,
                date_token=date_token,
                due_date=due,
                start=start,
                end=start + len(line),
            )
        )
        out.append(render_task_line(task_line, content, date_token, due, inline_id) + eol)

    return ParseResult(mentions=mentions, text="\n".join(out), minted=minted)
