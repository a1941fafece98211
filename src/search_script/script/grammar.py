"""Turn a script line into a typed action invocation.

The keyword picks the ActionDefinition; the definition's fields say how the
rest of the line is read. Positional fields come from a small tokenizer that
understands ``[bracketed keys]``; list and free-text fields take the rest of
the line instead.
"""

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from search_script.backend.messages import TermCase, TermMatch
from search_script.script.actions import (
    Action,
    ActionCatalog,
    ActionDefinition,
    Field,
    FieldKind,
    SearchReportMode,
)

KEY_OPEN = "["
KEY_CLOSE = "]"

_UNSIGNED_PATTERN = re.compile(r"\d+", re.ASCII)
_INTEGER_PATTERN = re.compile(r"[+-]?\d+", re.ASCII)
_WHITESPACE_PATTERN = re.compile(r"\s")
_NAME_LIST_SEPARATORS = re.compile(r"[,\s]+")

# time.sleep rejects anything longer
MAX_SLEEP_SECONDS = int(threading.TIMEOUT_MAX)


class ParseErrorKind(Enum):
    UNKNOWN_ACTION = "unknown action"
    ARITY_MISMATCH = "wrong number of arguments"
    MALFORMED_FIELD = "malformed field"
    INVERTED_RANGE = "start is greater than end"


class ParseError(Exception):
    kind: ParseErrorKind
    line_number: int
    line: str
    detail: str | None

    def __init__(self, kind: ParseErrorKind, line_number: int, line: str, detail: str | None = None):
        self.kind = kind
        self.line_number = line_number
        self.line = line
        self.detail = detail
        message = kind.value
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


@dataclass
class Token:
    text: str
    bracketed: bool = False


@dataclass
class ParsedInvocation:
    definition: ActionDefinition
    fields: dict[str, Any] = field(default_factory=dict)
    line_number: int = 0

    @property
    def action(self) -> Action:
        return self.definition.action

    @property
    def keyword(self) -> str:
        return self.definition.keyword

    def describe(self) -> str:
        """Echo used by check-only runs: ``'keyword' 'text' 10.``"""
        parts = [_quote(self.keyword)]
        parts.extend(_render_value(value) for value in self.fields.values())
        return " ".join(parts) + "."


def _quote(value: str) -> str:
    return f"'{value}'"


def _render_value(value: Any) -> str:
    if value is None:
        return _quote("")
    if isinstance(value, Enum):
        return _quote(value.name.lower())
    if isinstance(value, int):
        return str(value)
    if isinstance(value, list):
        return _quote(",".join(value))
    return _quote(str(value))


def tokenize(text: str) -> list[Token]:
    """Split on whitespace, keeping ``[...]`` together as one token.

    Raises:
        ValueError: On an unterminated or empty bracketed token.
    """
    tokens: list[Token] = []
    position = 0
    length = len(text)

    while position < length:
        if text[position].isspace():
            position += 1
            continue

        if text[position] == KEY_OPEN:
            close = text.find(KEY_CLOSE, position + 1)
            if close == -1:
                raise ValueError(f"missing '{KEY_CLOSE}'")
            content = text[position + 1 : close]
            if not content.strip():
                raise ValueError("empty bracketed field")
            tokens.append(Token(content, bracketed=True))
            position = close + 1
            continue

        end = position
        while end < length and not text[end].isspace():
            end += 1
        tokens.append(Token(text[position:end]))
        position = end

    return tokens


def split_keyword(line: str) -> tuple[str, str | None]:
    """Return the keyword and the verbatim remainder after the first space."""
    trimmed = line.strip()
    match = _WHITESPACE_PATTERN.search(trimmed)
    if match is None:
        return trimmed, None
    remainder = trimmed[match.end() :]
    return trimmed[: match.start()], remainder or None


def lookup_action(catalog: ActionCatalog, line: str, line_number: int) -> ActionDefinition | None:
    """Resolve the keyword of a line, None for a blank line.

    Raises:
        ParseError: If the keyword is not in the catalog.
    """
    keyword, _ = split_keyword(line)
    if not keyword:
        return None
    definition = catalog.lookup(keyword)
    if definition is None:
        raise ParseError(ParseErrorKind.UNKNOWN_ACTION, line_number, line, keyword)
    return definition


def parse_arguments(definition: ActionDefinition, line: str, line_number: int) -> ParsedInvocation:
    """Extract the typed fields of an already resolved line.

    Raises:
        ParseError: If the arguments do not fit the action's grammar.
    """
    _, remainder = split_keyword(line)

    if definition.is_remainder:
        only = definition.fields[0]
        if only.kind == FieldKind.TEXT:
            value: Any = remainder
        else:
            value = [name for name in _NAME_LIST_SEPARATORS.split(remainder or "") if name]
            if not value:
                raise ParseError(ParseErrorKind.ARITY_MISMATCH, line_number, line, "no index names")
        return ParsedInvocation(definition, {only.name: value}, line_number)

    try:
        tokens = tokenize(remainder or "")
    except ValueError as e:
        raise ParseError(ParseErrorKind.MALFORMED_FIELD, line_number, line, str(e)) from e

    positional = [f for f in definition.fields if f.kind != FieldKind.TERM_AND_FIELD]
    has_tail = len(positional) != len(definition.fields)
    required = sum(1 for f in positional if not f.optional)
    maximum = len(positional) + (2 if has_tail else 0)

    if not required <= len(tokens) <= maximum:
        raise ParseError(
            ParseErrorKind.ARITY_MISMATCH,
            line_number,
            line,
            f"expected {required} to {maximum} arguments, got {len(tokens)}",
        )

    values: dict[str, Any] = {}
    for index, slot in enumerate(positional):
        if index < len(tokens):
            values[slot.name] = _convert(slot, tokens[index], line_number, line)
        else:
            values[slot.name] = slot.default_for(values)

    if has_tail:
        term, field_name = _infer_term_and_field(values["term_match"], tokens[len(positional) :])
        values["term"] = term
        values["field_name"] = field_name

    if definition.action == Action.SEARCH_OFFSETS and values["start"] > values["end"]:
        raise ParseError(
            ParseErrorKind.INVERTED_RANGE,
            line_number,
            line,
            f"{values['start']} > {values['end']}",
        )

    if definition.action == Action.SLEEP and values["seconds"] > MAX_SLEEP_SECONDS:
        raise ParseError(
            ParseErrorKind.MALFORMED_FIELD,
            line_number,
            line,
            f"seconds must be at most {MAX_SLEEP_SECONDS}",
        )

    return ParsedInvocation(definition, values, line_number)


def _convert(slot: Field, token: Token, line_number: int, line: str) -> Any:
    if slot.kind == FieldKind.KEY:
        if not token.bracketed:
            raise ParseError(
                ParseErrorKind.MALFORMED_FIELD, line_number, line, f"{slot.name} must be written as [key]"
            )
        return token.text

    if token.bracketed:
        raise ParseError(ParseErrorKind.MALFORMED_FIELD, line_number, line, f"unexpected [...] for {slot.name}")

    if slot.kind == FieldKind.UNSIGNED:
        if not _UNSIGNED_PATTERN.fullmatch(token.text):
            raise ParseError(ParseErrorKind.MALFORMED_FIELD, line_number, line, f"{slot.name} is not a number")
        return int(token.text)
    if slot.kind == FieldKind.INTEGER:
        if not _INTEGER_PATTERN.fullmatch(token.text):
            raise ParseError(ParseErrorKind.MALFORMED_FIELD, line_number, line, f"{slot.name} is not a number")
        return int(token.text)
    if slot.kind == FieldKind.SEARCH_REPORT:
        return SearchReportMode.from_token(token.text)
    if slot.kind == FieldKind.TERM_MATCH:
        return TermMatch.from_token(token.text)
    if slot.kind == FieldKind.TERM_CASE:
        return TermCase.from_token(token.text)
    return token.text


def _infer_term_and_field(term_match: TermMatch, extra: list[Token]) -> tuple[str | None, str | None]:
    """A lone trailing token is a term for pattern matches, otherwise a field name."""
    if not extra:
        return None, None
    if len(extra) == 1:
        if term_match.takes_pattern:
            return extra[0].text, None
        return None, extra[0].text
    return extra[0].text, extra[1].text


def parse_line(catalog: ActionCatalog, line: str, line_number: int) -> ParsedInvocation | None:
    """Resolve and parse a full line, None for a blank line."""
    definition = lookup_action(catalog, line, line_number)
    if definition is None:
        return None
    return parse_arguments(definition, line, line_number)
