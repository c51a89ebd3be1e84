# patchloop/utils/parser.py
"""
Incremental Directive Parser

Extracts edit directives from agent output while it streams.

FORMAT (attribute-based, prefix configurable, default "pl"):
<pl-write path="app/page.tsx" description="optional">
file content here
</pl-write>
<pl-rename from="a.ts" to="b.ts"></pl-rename>
<pl-delete path="old.ts" />
<pl-add-dependency packages="zod clsx" />

RULES:
- A directive is emitted only once its closing marker has fully arrived
- Offsets only move forward, so the same text never yields a directive twice
- A truncated tail (half an open tag, a body without its close tag) is
  deferred, never an error
- Anything outside directive tags is ignored
- Unknown <pl-xyz> tags are plain text

The scanner is a small state machine:

    SCAN  --"<pl-"-->  OPEN_TAG  --">"-->  BODY  --"</pl-name>"-->  SCAN
                          |
                          +--"/>"--> (emit) --> SCAN

Each state resumes from where it stopped on the previous chunk.
"""

import html
import re
from enum import Enum
from typing import Dict, List, Optional

from patchloop.core.config import settings
from patchloop.core.exceptions import MalformedDirective, PathEscape
from patchloop.core.logging import log
from patchloop.core.types import (
    AddDependencyDirective,
    DeleteDirective,
    ParsedDirective,
    RenameDirective,
    WriteDirective,
)
from patchloop.utils.path_utils import normalize

TAG_NAMES = ("write", "rename", "delete", "add-dependency")

TAG_NAME_PATTERN = re.compile(r"[a-z][a-z-]*")
ATTRIBUTE_PATTERN = re.compile(
    r'([A-Za-z_][\w-]*)\s*=\s*(?:"([^"]*)"|\'([^\']*)\')'
)

FENCE = "```"


class _State(Enum):
    SCAN = "scan"
    OPEN_TAG = "open_tag"
    BODY = "body"


def strip_code_fence(body: str) -> str:
    """
    Final content of a write body.

    Drops the newline right after the open tag and collapses trailing blank
    lines into one final newline. If the first and last remaining lines both
    start with a triple backtick, both fence lines are removed.
    """
    content = body
    if content.startswith("\r\n"):
        content = content[2:]
    elif content.startswith("\n"):
        content = content[1:]

    lines = content.split("\n")
    while lines and not lines[-1].strip():
        lines.pop()

    if len(lines) >= 2 and lines[0].lstrip().startswith(FENCE) and lines[-1].strip().startswith(FENCE):
        lines = lines[1:-1]
        terminated = True
    else:
        terminated = content.rstrip(" \t\r").endswith("\n")

    result = "\n".join(lines)
    if terminated and result:
        result += "\n"
    return result


def parse_attributes(head: str) -> Dict[str, str]:
    attrs: Dict[str, str] = {}
    for match in ATTRIBUTE_PATTERN.finditer(head):
        value = match.group(2) if match.group(2) is not None else match.group(3)
        attrs[match.group(1)] = html.unescape(value)
    return attrs


class IncrementalTagParser:
    """
    Streaming parser for one agent response.

    Usage:
        parser = IncrementalTagParser()
        async for chunk in stream:
            for parsed in parser.feed(chunk):
                ...
        warnings = parser.finish()

    Spans are absolute offsets into this parser's cumulative buffer.
    """

    def __init__(self, tag_prefix: Optional[str] = None):
        self.tag_prefix = tag_prefix or settings.parser.tag_prefix
        self._opener = f"<{self.tag_prefix}-"

        self._buffer = ""
        self._state = _State.SCAN
        self._cursor = 0

        # Open tag under construction
        self._tag_start = 0
        self._open_scan = 0
        self._quote: Optional[str] = None
        self._tag_name = ""
        self._name_end = 0
        self._attrs: Dict[str, str] = {}

        # Body under construction
        self._body_start = 0
        self._close_marker = ""
        self._close_search = 0

        self._finished = False
        self.errors: List[PathEscape] = []
        self.warnings: List[MalformedDirective] = []

    # ─────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def has_pending(self) -> bool:
        """True while a directive has opened but not yet closed."""
        return self._state != _State.SCAN

    def feed(self, chunk: str) -> List[ParsedDirective]:
        """Append one chunk and return every directive it completed."""
        if self._finished:
            raise ValueError("parser already finished; start a new one for the next stream")
        if not chunk:
            return []
        self._buffer += chunk
        return self._advance()

    def sync(self, cumulative: str) -> List[ParsedDirective]:
        """
        Accept the whole buffer seen so far instead of a delta.

        Only the unseen suffix is consumed; re-scanning a grown buffer never
        re-emits a directive.
        """
        if not cumulative.startswith(self._buffer):
            raise ValueError("cumulative buffer does not extend the text already parsed")
        return self.feed(cumulative[len(self._buffer):])

    def finish(self) -> List[MalformedDirective]:
        """
        End of stream. A still-open tag becomes a MalformedDirective warning.

        Returns every warning collected for this stream.
        """
        if not self._finished:
            self._finished = True
            if self._state != _State.SCAN:
                name = self._tag_name or self._guess_tag_name()
                if name and any(tag.startswith(name) for tag in TAG_NAMES):
                    self._warn(name, "unterminated at end of stream", self._tag_start, len(self._buffer))
        return list(self.warnings)

    def drain_errors(self) -> List[PathEscape]:
        """Return and clear path errors collected since the last drain."""
        errors, self.errors = self.errors, []
        return errors

    # ─────────────────────────────────────────────────────────
    # State machine
    # ─────────────────────────────────────────────────────────

    def _advance(self) -> List[ParsedDirective]:
        emitted: List[ParsedDirective] = []
        buf = self._buffer

        while True:
            if self._state == _State.SCAN:
                idx = buf.find(self._opener, self._cursor)
                if idx == -1:
                    # Keep just enough tail to catch an opener split across chunks
                    self._cursor = max(self._cursor, len(buf) - len(self._opener) + 1)
                    break
                self._tag_start = idx
                self._open_scan = idx + len(self._opener)
                self._quote = None
                self._tag_name = ""
                self._state = _State.OPEN_TAG

            if self._state == _State.OPEN_TAG:
                end = self._scan_open_tag()
                if end == -1:
                    break
                if end == -2:
                    # Unknown name, or another "<" before this tag closed: it was prose
                    self._reset_to_scan(self._tag_start + 1)
                    continue

                rest = buf[self._name_end:end]
                self_closing = rest.rstrip().endswith("/")
                self._attrs = parse_attributes(rest.rstrip().rstrip("/"))

                if self_closing:
                    parsed = self._build(self._tag_name, self._attrs, None, self._tag_start, end + 1)
                    if parsed:
                        emitted.append(parsed)
                    self._reset_to_scan(end + 1)
                    continue

                self._body_start = end + 1
                self._close_marker = f"</{self.tag_prefix}-{self._tag_name}>"
                self._close_search = self._body_start
                self._state = _State.BODY

            if self._state == _State.BODY:
                idx = buf.find(self._close_marker, self._close_search)
                if idx == -1:
                    self._close_search = max(self._body_start, len(buf) - len(self._close_marker) + 1)
                    break
                close_end = idx + len(self._close_marker)
                body = buf[self._body_start:idx]
                parsed = self._build(self._tag_name, self._attrs, body, self._tag_start, close_end)
                if parsed:
                    emitted.append(parsed)
                self._reset_to_scan(close_end)

        return emitted

    def _scan_open_tag(self) -> int:
        """
        Find the ">" ending the open tag, honouring quoted attribute values.

        The tag name is resolved first; an unknown name turns the opener back
        into text before any quote is tracked.

        Returns its index, -1 if more input is needed, -2 if this is not a tag.
        """
        buf = self._buffer
        if not self._tag_name:
            name_start = self._tag_start + len(self._opener)
            match = TAG_NAME_PATTERN.match(buf, name_start)
            name_end = match.end() if match else name_start
            if name_end >= len(buf):
                return -1
            if not match or match.group(0) not in TAG_NAMES:
                return -2
            if not (buf[name_end].isspace() or buf[name_end] in "/>"):
                return -2
            self._tag_name = match.group(0)
            self._name_end = name_end
            self._open_scan = name_end

        i = self._open_scan
        quote = self._quote
        while i < len(buf):
            ch = buf[i]
            if quote:
                if ch == quote:
                    quote = None
            elif ch in ("\"", "'"):
                quote = ch
            elif ch == ">":
                self._open_scan = i
                self._quote = None
                return i
            elif ch == "<":
                return -2
            i += 1
        self._open_scan = i
        self._quote = quote
        return -1

    def _reset_to_scan(self, cursor: int) -> None:
        self._state = _State.SCAN
        self._cursor = cursor
        self._tag_name = ""
        self._attrs = {}
        self._quote = None

    def _guess_tag_name(self) -> str:
        head = self._buffer[self._tag_start + len(self._opener):]
        match = TAG_NAME_PATTERN.match(head)
        return match.group(0) if match else ""

    # ─────────────────────────────────────────────────────────
    # Directive construction
    # ─────────────────────────────────────────────────────────

    def _build(
        self,
        name: str,
        attrs: Dict[str, str],
        body: Optional[str],
        start: int,
        end: int,
    ) -> Optional[ParsedDirective]:
        try:
            if name == "write":
                if not attrs.get("path"):
                    return self._warn(name, "missing path attribute", start, end)
                if body is None:
                    return self._warn(name, "write directive needs a body", start, end)
                directive = WriteDirective(
                    path=normalize(attrs["path"]),
                    content=strip_code_fence(body),
                    description=attrs.get("description") or None,
                )
            elif name == "rename":
                if not attrs.get("from") or not attrs.get("to"):
                    return self._warn(name, "rename needs both from and to", start, end)
                directive = RenameDirective(
                    from_path=normalize(attrs["from"]),
                    to_path=normalize(attrs["to"]),
                )
            elif name == "delete":
                if not attrs.get("path"):
                    return self._warn(name, "missing path attribute", start, end)
                directive = DeleteDirective(path=normalize(attrs["path"]))
            else:
                packages = frozenset((attrs.get("packages") or "").split())
                if not packages:
                    return self._warn(name, "no packages listed", start, end)
                directive = AddDependencyDirective(packages=packages)
        except PathEscape as e:
            log("PARSER", f"⚠️ Skipping <{self.tag_prefix}-{name}> at {start}: {e.message}")
            self.errors.append(e)
            return None

        log("PARSER", f"✅ Closed <{self.tag_prefix}-{name}> [{start}:{end}]")
        return ParsedDirective(directive=directive, start=start, end=end)

    def _warn(self, name: str, reason: str, start: int, end: int) -> None:
        warning = MalformedDirective(f"{self.tag_prefix}-{name}" if name else self.tag_prefix, reason, (start, end))
        log("PARSER", f"⚠️ {warning.message}")
        self.warnings.append(warning)
        return None
