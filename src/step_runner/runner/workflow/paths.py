"""Reference paths: the restricted JSONPath dialect used to select and place data.

A reference path is root-anchored (`$`, or `$$` for the context document) and
may use dot/bracket child access, array indexing, `*` wildcards and `..`
recursive descent. The current-object operator `@`, unions (`,`), slices
(`:`) and filters (`?`) are parsed into fragments of their own and then
rejected with `NotReferencePathError`, so callers can tell a forbidden
operator from a plain syntax error.

See https://states-language.net/#ref-paths
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from typing import Any

from .errors import NotReferencePathError, PathNotFoundError, PathSyntaxError

_CONTEXT_PREFIX = "$$"
_PLAIN_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
_QUOTES = ("'", '"')


@dataclass(frozen=True, slots=True)
class Child:
    name: str


@dataclass(frozen=True, slots=True)
class Nth:
    index: int


@dataclass(frozen=True, slots=True)
class Wildcard:
    pass


@dataclass(frozen=True, slots=True)
class Descent:
    pass


# Fragments below are recognised only so they can be rejected.


@dataclass(frozen=True, slots=True)
class At:
    pass


@dataclass(frozen=True, slots=True)
class Union:
    members: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Slice:
    text: str


@dataclass(frozen=True, slots=True)
class Filter:
    text: str


Fragment = Child | Nth | Wildcard | Descent | At | Union | Slice | Filter

_FORBIDDEN: dict[type, str] = {At: "@", Union: ",", Slice: ":", Filter: "?"}


@dataclass(frozen=True, slots=True)
class ReferencePath:
    """A parsed reference path. Immutable and safe to share between runs."""

    fragments: tuple[Fragment, ...]
    is_context: bool = False

    def __str__(self) -> str:
        rendered = _render(self.fragments)
        return "$" + rendered if self.is_context else rendered

    @property
    def is_root(self) -> bool:
        return not self.fragments

    @property
    def is_definite(self) -> bool:
        """True when the path can only ever select a single node."""
        return not any(isinstance(f, (Wildcard, Descent)) for f in self.fragments)

    def find(self, data: Any, context: Any = None) -> list[Any]:
        """Return every node the path selects, in document order."""
        values = [context if self.is_context else data]
        for fragment in self.fragments:
            values = _step(values, fragment)
        return values

    def get(self, data: Any, context: Any = None) -> Any:
        """Resolve the path.

        A definite path returns its single node and raises `PathNotFoundError`
        when there is none; an indefinite path returns the list of matches.
        """
        matches = self.find(data, context)
        if not self.is_definite:
            return matches
        if not matches:
            raise PathNotFoundError(str(self))
        return matches[0]

    def exists(self, data: Any, context: Any = None) -> bool:
        return bool(self.find(data, context))

    def put(self, data: Any, value: Any) -> Any:
        """Return a copy of `data` with `value` placed at this path.

        Missing intermediate objects are created. Only definite data paths can
        be used as a destination.
        """
        if self.is_context or not self.is_definite:
            raise PathNotFoundError(str(self))
        if not self.fragments:
            return value

        root = copy.deepcopy(data)
        node = root
        for fragment in self.fragments[:-1]:
            node = _child_for_put(node, fragment, str(self))
        _assign(node, self.fragments[-1], value, str(self))
        return root


def parse(path: str) -> ReferencePath:
    """Parse `path` into a `ReferencePath`.

    Raises:
        PathSyntaxError: the text is not a well-formed path.
        NotReferencePathError: the path uses `@`, `,`, `:` or `?`.
    """
    if not isinstance(path, str):
        raise PathSyntaxError(f"path must be a string, got {type(path).__name__}")

    text = path
    is_context = False
    if text.startswith(_CONTEXT_PREFIX):
        text = text[1:]
        is_context = True

    fragments = _parse_fragments(text, path)
    for fragment in fragments:
        operator = _FORBIDDEN.get(type(fragment))
        if operator is not None:
            raise NotReferencePathError(path, operator)

    return ReferencePath(fragments=fragments, is_context=is_context)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_fragments(text: str, original: str) -> tuple[Fragment, ...]:
    if not text:
        raise PathSyntaxError("empty path")

    fragments: list[Fragment] = []
    if text[0] == "@":
        fragments.append(At())
    elif text[0] != "$":
        raise PathSyntaxError(f"path must start with '$': {original!r}")

    pos = 1
    end = len(text)
    while pos < end:
        ch = text[pos]
        if ch == "[":
            fragment, pos = _read_bracket(text, pos, original)
            fragments.append(fragment)
            continue
        if ch != ".":
            raise PathSyntaxError(f"unexpected {ch!r} at offset {pos} in {original!r}")

        if text.startswith("..", pos):
            fragments.append(Descent())
            pos += 2
            if pos < end and text[pos] == "[":
                continue
        else:
            pos += 1

        if pos >= end:
            raise PathSyntaxError(f"path ends with '.': {original!r}")
        if text[pos] == "*":
            fragments.append(Wildcard())
            pos += 1
            continue
        if text[pos] in ".[":
            raise PathSyntaxError(f"missing name at offset {pos} in {original!r}")

        start = pos
        while pos < end and text[pos] not in ".[":
            pos += 1
        fragments.append(_classify_name(text[start:pos], original))

    return tuple(fragments)


def _classify_name(name: str, original: str) -> Fragment:
    if "?" in name:
        return Filter(name)
    if "@" in name:
        return At()
    if ":" in name:
        return Slice(name)
    if "," in name:
        return Union(tuple(name.split(",")))
    if "]" in name:
        raise PathSyntaxError(f"unexpected ']' in {original!r}")
    return Child(name)


def _read_bracket(text: str, pos: int, original: str) -> tuple[Fragment, int]:
    i = pos + 1
    depth = 0
    quote: str | None = None
    while i < len(text):
        ch = text[i]
        if quote is not None:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "]" and depth == 0:
            break
        i += 1
    else:
        raise PathSyntaxError(f"unterminated '[' at offset {pos} in {original!r}")

    return _classify_bracket(text[pos + 1 : i].strip(), original), i + 1


def _classify_bracket(content: str, original: str) -> Fragment:
    if not content:
        raise PathSyntaxError(f"empty brackets in {original!r}")
    if content.startswith("?"):
        return Filter(content)
    if content == "*":
        return Wildcard()
    if content[0] in _QUOTES:
        members = _split_top_level(content)
        if len(members) > 1:
            return Union(members)
        return Child(_split_quoted(content, original)[0])
    if "@" in content:
        return At()
    if "," in content:
        return Union(tuple(part.strip() for part in content.split(",")))
    if ":" in content:
        return Slice(content)
    try:
        return Nth(int(content))
    except ValueError:
        raise PathSyntaxError(f"invalid index {content!r} in {original!r}") from None


def _split_top_level(content: str) -> tuple[str, ...]:
    """Split bracket content on commas that sit outside quoted names."""
    members: list[str] = []
    start = 0
    quote: str | None = None
    i = 0
    while i < len(content):
        ch = content[i]
        if quote is not None:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif ch == ",":
            members.append(content[start:i].strip())
            start = i + 1
        i += 1
    members.append(content[start:].strip())
    return tuple(members)


def _split_quoted(content: str, original: str) -> list[str]:
    """Split `'a', "b"` into unescaped names."""
    members: list[str] = []
    i = 0
    while i < len(content):
        quote = content[i]
        if quote not in _QUOTES:
            raise PathSyntaxError(f"expected a quoted name in {original!r}")
        i += 1
        chars: list[str] = []
        while i < len(content) and content[i] != quote:
            if content[i] == "\\" and i + 1 < len(content):
                i += 1
            chars.append(content[i])
            i += 1
        if i >= len(content):
            raise PathSyntaxError(f"unterminated quoted name in {original!r}")
        members.append("".join(chars))
        i += 1

        while i < len(content) and content[i].isspace():
            i += 1
        if i < len(content):
            if content[i] != ",":
                raise PathSyntaxError(f"unexpected {content[i]!r} in {original!r}")
            i += 1
            while i < len(content) and content[i].isspace():
                i += 1
            if i >= len(content):
                raise PathSyntaxError(f"trailing ',' in {original!r}")
    return members


def _render(fragments: tuple[Fragment, ...]) -> str:
    out = ["$"]
    after_descent = False
    for fragment in fragments:
        if isinstance(fragment, Descent):
            out.append("..")
            after_descent = True
            continue
        if isinstance(fragment, Child):
            if _PLAIN_NAME.match(fragment.name):
                out.append(fragment.name if after_descent else "." + fragment.name)
            else:
                escaped = fragment.name.replace("\\", "\\\\").replace("'", "\\'")
                out.append(f"['{escaped}']")
        elif isinstance(fragment, Nth):
            out.append(f"[{fragment.index}]")
        elif isinstance(fragment, Wildcard):
            out.append("*" if after_descent else ".*")
        after_descent = False
    return "".join(out)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _step(values: list[Any], fragment: Fragment) -> list[Any]:
    out: list[Any] = []
    for value in values:
        if isinstance(fragment, Child):
            if isinstance(value, dict) and fragment.name in value:
                out.append(value[fragment.name])
        elif isinstance(fragment, Nth):
            if isinstance(value, list) and -len(value) <= fragment.index < len(value):
                out.append(value[fragment.index])
        elif isinstance(fragment, Wildcard):
            if isinstance(value, dict):
                out.extend(value.values())
            elif isinstance(value, list):
                out.extend(value)
        elif isinstance(fragment, Descent):
            out.extend(_self_and_descendants(value))
    return out


def _self_and_descendants(value: Any) -> list[Any]:
    found = [value]
    if isinstance(value, dict):
        for child in value.values():
            found.extend(_self_and_descendants(child))
    elif isinstance(value, list):
        for child in value:
            found.extend(_self_and_descendants(child))
    return found


def _child_for_put(node: Any, fragment: Fragment, path: str) -> Any:
    if isinstance(fragment, Child):
        if not isinstance(node, dict):
            raise PathNotFoundError(path)
        child = node.get(fragment.name)
        if child is None:
            child = node[fragment.name] = {}
        if not isinstance(child, (dict, list)):
            raise PathNotFoundError(path)
        return child
    if isinstance(fragment, Nth):
        if not isinstance(node, list) or not -len(node) <= fragment.index < len(node):
            raise PathNotFoundError(path)
        return node[fragment.index]
    raise PathNotFoundError(path)


def _assign(node: Any, fragment: Fragment, value: Any, path: str) -> None:
    if isinstance(fragment, Child) and isinstance(node, dict):
        node[fragment.name] = value
        return
    if (
        isinstance(fragment, Nth)
        and isinstance(node, list)
        and -len(node) <= fragment.index < len(node)
    ):
        node[fragment.index] = value
        return
    raise PathNotFoundError(path)
