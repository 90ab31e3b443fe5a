"""Token-level editing of a located package section.

A `Section` is the span of text between the opening ``[`` and the matching
closing ``]`` of a descriptor's package list. The functions here only ever
touch bytes inside that span.

Entries are split on whitespace outside nested brackets, so an entry such
as ``(python3.withPackages (ps: [ ps.numpy ]))`` stays a single token.
"""

from typing import Iterable, NamedTuple


OPENERS = "([{"
CLOSERS = ")]}"


class Section(NamedTuple):
    # index just past the opening bracket
    start: int
    # index of the closing bracket
    end: int


def split_comment(line: str) -> tuple[str, str]:
    """Split `line` into its code part and its `#` comment (comment keeps the `#`)."""
    code, sep, comment = line.partition("#")
    return code, sep + comment


def clean_token(raw: str) -> str:
    return raw.rstrip(",;")


def split_code(code: str, depth: int = 0) -> tuple[list[str], int]:
    """Split `code` on whitespace that is not inside nested brackets.

    `depth` is the nesting carried over from previous lines. Returns the
    pieces and the nesting depth at the end of `code`; when it is not zero
    the last piece is an unfinished nested entry.
    """
    pieces = []
    current = ""
    for char in code:
        if char.isspace() and (depth == 0 or not current):
            if current:
                pieces.append(current)
            current = ""
            continue
        if char in OPENERS:
            depth += 1
        elif char in CLOSERS and depth:
            depth -= 1
        current += char
    if current:
        pieces.append(current.rstrip())
    return pieces, depth


def matching_bracket(content: str, start: int) -> int:
    """Index of the `]` closing the list opened just before `start`, -1 if unclosed.

    Nested lists are skipped. Brackets in `#` comments and double quoted
    strings do not count.
    """
    depth = 0
    in_string = False
    idx = start
    while idx < len(content):
        char = content[idx]
        if in_string:
            if char == "\\":
                idx += 1
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "#":
            idx = content.find("\n", idx)
            if idx == -1:
                return -1
        elif char == "[":
            depth += 1
        elif char == "]":
            if depth == 0:
                return idx
            depth -= 1
        idx += 1
    return -1


def section_tokens(content: str, section: Section) -> list[str]:
    packages = []
    pending = ""
    for line in content[section.start:section.end].split("\n"):
        code, _ = split_comment(line)
        pieces, depth = split_code(f"{pending} {code.strip()}" if pending else code)
        pending = pieces.pop() if depth else ""
        packages.extend(tok for tok in map(clean_token, pieces) if tok)
    if pending:
        packages.append(clean_token(pending))
    return packages


def insert_tokens(content: str, section: Section, packages: Iterable[str]) -> str:
    packages = list(packages)
    if not packages:
        return content

    last_newline = content.rfind("\n", section.start, section.end)
    close_prefix = content[last_newline + 1:section.end]
    if last_newline == -1 or close_prefix.strip():
        # the closing bracket shares its line with a token or the opening marker
        previous = content[section.end - 1]
        text = " ".join(packages)
        if previous.isspace():
            text = text + " "
        elif previous != "[":
            text = " " + text
        return content[:section.end] + text + content[section.end:]

    entry_lines = content[section.start:last_newline].split("\n")[1:]
    indent = close_prefix + "  "
    for line in entry_lines:
        if line.strip():
            indent = line[:len(line) - len(line.lstrip())]
            break

    insertion = "".join(f"{indent}{pkg}\n" for pkg in packages)
    point = last_newline + 1
    return content[:point] + insertion + content[point:]


def drop_tokens(content: str, section: Section, to_remove: set[str]) -> tuple[str, int]:
    lines = content[section.start:section.end].split("\n")
    last = len(lines) - 1
    removed = 0
    kept_lines = []
    depth = 0
    for idx, line in enumerate(lines):
        code, comment = split_comment(line)
        opened_inside = depth > 0
        raw_tokens, depth = split_code(code, depth)
        # pieces of an entry spanning several lines are never removed
        nested = set()
        if raw_tokens and opened_inside:
            nested.add(0)
        if raw_tokens and depth:
            nested.add(len(raw_tokens) - 1)
        kept = [
            raw for pos, raw in enumerate(raw_tokens)
            if pos in nested or clean_token(raw) not in to_remove
        ]
        dropped = len(raw_tokens) - len(kept)
        if not dropped:
            kept_lines.append(line)
            continue
        removed += dropped

        shares_marker_line = idx == 0 or idx == last
        if not kept and not shares_marker_line:
            continue

        lead = code[:len(code) - len(code.lstrip())]
        trail = code[len(code.rstrip()):] if kept else ""
        rebuilt = lead + " ".join(kept) + trail
        if comment:
            rebuilt = rebuilt + comment if kept else lead + comment
        kept_lines.append(rebuilt)

    body = "\n".join(kept_lines)
    return content[:section.start] + body + content[section.end:], removed
