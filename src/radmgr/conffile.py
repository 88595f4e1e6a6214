# src/radmgr/conffile.py
"""
Edits for FreeRADIUS's block-structured configuration language.

All functions are pure: they take the file text and return new text, so
callers decide where the bytes come from (local disk or SSH) and tests need
no filesystem. Every edit is idempotent.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

__all__ = [
    "Block",
    "find_blocks",
    "find_block",
    "brace_balance",
    "parse_client_blocks",
    "render_client_block",
    "format_value",
    "upsert_client",
    "remove_client",
    "ensure_in_section",
    "set_option",
    "UserEntry",
    "parse_users",
    "user_entry_items",
    "remove_user_entry",
]

INDENT = "    "
_BARE_VALUE = re.compile(r"^[\w.:/@*+-]+$")


@dataclass(frozen=True)
class Block:
    start: int       # first char of the header line
    open: int        # index of "{"
    close: int       # index of the matching "}"
    end: int         # just past "}" and its newline

    def body(self, text: str) -> str:
        return text[self.open + 1:self.close]


# -----------------------------
# Scanning
# -----------------------------

def _scan(text: str, start: int = 0):
    """Yield (index, char) for braces outside quotes and # comments."""
    i = start
    n = len(text)
    quote: Optional[str] = None
    while i < n:
        c = text[i]
        if quote:
            if c == "\\":
                i += 2
                continue
            if c == quote:
                quote = None
        elif c in "\"'`":
            quote = c
        elif c == "#":
            nl = text.find("\n", i)
            if nl == -1:
                return
            i = nl
        elif c in "{}":
            yield i, c
        i += 1


def _match_brace(text: str, open_idx: int) -> int:
    depth = 0
    for i, c in _scan(text, open_idx):
        depth += 1 if c == "{" else -1
        if depth == 0:
            return i
    raise ValueError(f"Unbalanced braces: block opened at offset {open_idx} never closes")


def _line_start(text: str, idx: int) -> int:
    return text.rfind("\n", 0, idx) + 1


def _header_re(keyword: str, name: Optional[str]) -> re.Pattern:
    pat = rf"^[ \t]*{re.escape(keyword)}"
    if name is not None:
        pat += rf"[ \t]+{re.escape(name)}"
    return re.compile(pat + r"[ \t]*\{", re.MULTILINE)


def find_blocks(text: str, keyword: str, name: Optional[str] = None) -> List[Block]:
    """Every `keyword [name] { ... }` block, outermost first, in file order."""
    out: List[Block] = []
    pos = 0
    rx = _header_re(keyword, name)
    while True:
        m = rx.search(text, pos)
        if not m:
            break
        open_idx = m.end() - 1
        close = _match_brace(text, open_idx)
        end = close + 1
        if text[end:end + 1] == "\n":
            end += 1
        out.append(Block(m.start(), open_idx, close, end))
        pos = end
    return out


def find_block(text: str, keyword: str, name: Optional[str] = None) -> Optional[Block]:
    blocks = find_blocks(text, keyword, name)
    return blocks[0] if blocks else None


def brace_balance(text: str) -> int:
    """Count of '{' minus '}' outside quotes and comments; 0 means balanced."""
    bal = 0
    for _, c in _scan(text):
        bal += 1 if c == "{" else -1
    return bal


def _strip_comment(line: str) -> str:
    """Cut a line at the first # that is not inside a quoted string."""
    quote: Optional[str] = None
    i = 0
    while i < len(line):
        c = line[i]
        if quote:
            if c == "\\":
                i += 2
                continue
            if c == quote:
                quote = None
        elif c in "\"'`":
            quote = c
        elif c == "#":
            return line[:i]
        i += 1
    return line


def _depth0_lines(body: str) -> List[str]:
    """Statements that belong to the block itself, not to nested blocks."""
    out: List[str] = []
    depth = 0
    for raw in body.splitlines():
        line = _strip_comment(raw).strip()
        if not line:
            continue
        if depth == 0:
            out.append(line)
        for _, c in _scan(line):
            depth += 1 if c == "{" else -1
        depth = max(depth, 0)
    return out


# -----------------------------
# clients.conf
# -----------------------------

def _unescape(v: str) -> str:
    return re.sub(r"\\(.)", r"\1", v)


def _unquote(v: str) -> str:
    v = v.strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in "\"'":
        return _unescape(v[1:-1])
    return v


def format_value(v) -> str:
    """A value as FreeRADIUS reads it back: bare when safe, otherwise quoted."""
    if isinstance(v, bool):
        return "yes" if v else "no"
    s = str(v)
    if _BARE_VALUE.match(s):
        return s
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _parse_pairs(body: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for line in _depth0_lines(body):
        m = re.match(r"^([\w-]+)\s*=\s*(.*)$", line)
        if m:
            pairs[m.group(1)] = _unquote(m.group(2))
    return pairs


_CLIENT_RX = re.compile(r"^[ \t]*client[ \t]+([^\s{]+)[ \t]*\{", re.MULTILINE)


def parse_client_blocks(text: str) -> List[Tuple[str, Dict[str, str]]]:
    """[(name, {key: value}), ...] for every `client name { }`, indented or not."""
    out: List[Tuple[str, Dict[str, str]]] = []
    pos = 0
    while True:
        m = _CLIENT_RX.search(text, pos)
        if not m:
            break
        close = _match_brace(text, m.end() - 1)
        out.append((m.group(1), _parse_pairs(text[m.end():close])))
        pos = close + 1
    return out


def render_client_block(name: str, attrs: Mapping[str, object]) -> str:
    lines = [f"client {name} {{"]
    for k, v in attrs.items():
        lines.append(f"{INDENT}{k} = {format_value(v)}")
    lines.append("}")
    return "\n".join(lines) + "\n"


ADDRESS_KEYS = ("ipaddr", "ipv4addr", "ipv6addr")


def _key_rx(keys) -> re.Pattern:
    alt = "|".join(re.escape(k) for k in keys)
    return re.compile(rf"^([ \t]*)(?:{alt})[ \t]*=.*$\n?", re.MULTILINE)


def upsert_client(text: str, name: str, attrs: Mapping[str, object]) -> Tuple[str, bool]:
    """
    Rewrite the given keys inside `client name { }`, adding missing ones,
    or append a new block. Returns (new_text, created).

    A client holds one address: setting any of ipaddr/ipv4addr/ipv6addr
    replaces whichever of them the block already has.
    """
    blk = find_block(text, "client", name)
    if blk is None:
        sep = "" if not text or text.endswith("\n") else "\n"
        return f"{text}{sep}\n{render_client_block(name, attrs)}", True

    body = blk.body(text)
    for key, value in attrs.items():
        line = f"{key} = {format_value(value)}"
        rx = _key_rx(ADDRESS_KEYS if key in ADDRESS_KEYS else (key,))
        m = rx.search(body)
        if m:
            rest = body[m.end():]
            if key in ADDRESS_KEYS:
                rest = rx.sub("", rest)
            body = body[:m.start()] + m.group(1) + line + "\n" + rest
        else:
            head = body.rstrip(" \t")
            close_indent = body[len(head):]
            if not head.endswith("\n"):
                head += "\n"
            body = f"{head}{close_indent}{INDENT}{line}\n{close_indent}"
    return text[:blk.open + 1] + body + text[blk.close:], False


def remove_client(text: str, name: str) -> Tuple[str, bool]:
    blk = find_block(text, "client", name)
    if blk is None:
        return text, False
    before, after = text[:blk.start], text[blk.end:]
    if before.endswith("\n\n") and (after.startswith("\n") or not after):
        before = before[:-1]
    return before + after, True


# -----------------------------
# sites / radiusd.conf
# -----------------------------

def ensure_in_section(text: str, section: str, module: str) -> Tuple[str, bool]:
    """
    Make `module` the last statement of every `section { }` block that does
    not already call it (`-module` counts as calling it).
    """
    changed = False
    for blk in reversed(find_blocks(text, section)):
        statements = _depth0_lines(blk.body(text))
        if module in statements or f"-{module}" in statements:
            continue

        close_ls = _line_start(text, blk.close)
        close_indent = text[close_ls:blk.close]
        header_indent = text[blk.start:blk.open].split(section)[0]
        indent = header_indent + INDENT
        if close_indent.strip() == "":
            text = text[:close_ls] + f"{indent}{module}\n" + text[close_ls:]
        else:
            text = text[:blk.close] + f"\n{indent}{module}\n{header_indent}" + text[blk.close:]
        changed = True
    return text, changed


def set_option(text: str, key: str, value: object) -> Tuple[str, int]:
    """Rewrite every `key = ...` assignment. Returns (new_text, count)."""
    rx = re.compile(rf"^([ \t]*){re.escape(key)}[ \t]*=.*$", re.MULTILINE)
    line = f"{key} = {value}"
    return rx.subn(lambda m: m.group(1) + line, text)


# -----------------------------
# users file
# -----------------------------

@dataclass
class UserEntry:
    username: str
    password: Optional[str] = None
    group: Optional[str] = None
    simultaneous_use: Optional[int] = None


_PW_RX = re.compile(r'Cleartext-Password\s*:=\s*"((?:[^"\\]|\\.)*)"')
_GROUP_RX = re.compile(r'Group\s*:=\s*"((?:[^"\\]|\\.)*)"')
_SIM_RX = re.compile(r"Simultaneous-Use\s*:=\s*(\d+)")


def parse_users(text: str) -> List[UserEntry]:
    """Entries with a Cleartext-Password; DEFAULT entries are skipped."""
    out: List[UserEntry] = []
    current: Optional[UserEntry] = None
    for raw in text.splitlines():
        if not raw.strip() or raw.lstrip().startswith("#"):
            current = None if not raw.strip() else current
            continue
        if not raw[0].isspace():
            current = None
            name = raw.split(None, 1)[0]
            m = _PW_RX.search(raw)
            if name == "DEFAULT" or not m:
                continue
            current = UserEntry(username=name, password=_unescape(m.group(1)))
            out.append(current)
        if current is None:
            continue
        g = _GROUP_RX.search(raw)
        if g:
            current.group = _unescape(g.group(1))
        s = _SIM_RX.search(raw)
        if s:
            current.simultaneous_use = int(s.group(1))
    return out


_ITEM_RX = re.compile(r'([\w-]+)\s*([:=!<>~+-]+)\s*("(?:[^"\\]|\\.)*"|[^,\s]+)')


def user_entry_items(text: str, username: str) -> List[Tuple[str, str, str, str]]:
    """
    (kind, attribute, op, value) for one users-file entry. Items on the
    name line are "check" items, indented continuation lines are "reply".
    """
    out: List[Tuple[str, str, str, str]] = []
    in_entry = False
    for raw in text.splitlines():
        if not raw.strip() or raw.lstrip().startswith("#"):
            in_entry = in_entry and bool(raw.strip())
            continue
        if not raw[0].isspace():
            parts = raw.split(None, 1)
            in_entry = parts[0] == username
            kind, items = "check", parts[1] if len(parts) > 1 else ""
        elif in_entry:
            kind, items = "reply", raw
        else:
            continue
        if in_entry:
            for attr, op, value in _ITEM_RX.findall(items):
                out.append((kind, attr, op, _unquote(value)))
    return out


def remove_user_entry(text: str, username: str) -> Tuple[str, bool]:
    """Drop `username ...` and its indented continuation lines."""
    lines = text.splitlines(keepends=True)
    out: List[str] = []
    removed = False
    skipping = False
    for line in lines:
        if skipping:
            if line.strip() and line[0].isspace():
                continue
            skipping = False
            if not line.strip():
                continue
        if line and not line[0].isspace() and line.split(None, 1)[0] == username:
            skipping = True
            removed = True
            continue
        out.append(line)
    return "".join(out), removed
