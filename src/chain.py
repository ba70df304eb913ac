"""Token model, tokenizer and command chain builder for forksh.

This module defines the data structures representing a parsed input line
(commands, their redirections and the connectors joining them) and the
helpers that turn a raw line into a chain of those commands.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

# Token kinds. Connector tokens share their spelling with the connector
# they record on the command they close.
WORD = "word"
REDIRECTION = "redirection"
SEQUENCE = "sequence"
BACKGROUND = "background"
AND = "and"
OR = "or"
PIPE = "pipe"

END = "end"

CONNECTORS = {SEQUENCE, BACKGROUND, AND, OR, PIPE}

# Redirection directions
INPUT = "input"
OUTPUT = "output"
ERROR = "error"

REDIRECT_OPERATORS = {"<": INPUT, ">": OUTPUT, "2>": ERROR}

_OPERATOR_TOKENS = {";": SEQUENCE, "&": BACKGROUND, "&&": AND, "||": OR, "|": PIPE}
_CONNECTOR_SYMBOLS = {kind: sym for sym, kind in _OPERATOR_TOKENS.items()}


class ParseError(ValueError):
    """A line that cannot be turned into a command chain."""


@dataclass
class Token:
    kind: str
    text: str = ""


@dataclass
class Redirection:
    direction: str
    target: str

    @classmethod
    def from_operator(cls, operator: str, target: str) -> "Redirection":
        try:
            return cls(REDIRECT_OPERATORS[operator], target)
        except KeyError:
            raise ParseError(f"unsupported redirection: {operator}") from None


@dataclass
class Command:
    """One executable step; arguments[0] is the program or builtin name."""
    arguments: list[str] = field(default_factory=list)
    redirections: list[Redirection] = field(default_factory=list)
    is_background: bool = False
    connector: str = END
    exit_status: Optional[int] = None
    process_id: Optional[int] = None


class Chain:
    """Ordered, index-addressed sequence of the commands of one line."""

    def __init__(self, commands: Optional[Iterable[Command]] = None) -> None:
        self.commands: list[Command] = list(commands or [])

    def __len__(self) -> int:
        return len(self.commands)

    def __getitem__(self, index: int) -> Command:
        return self.commands[index]

    def __iter__(self) -> Iterator[Command]:
        return iter(self.commands)

    def pipeline_end(self, index: int) -> int:
        """Index of the last member of the pipeline starting at ``index``."""
        while self.commands[index].connector == PIPE:
            index += 1
        return index

    def background_end(self, index: int) -> int:
        """Index of the node whose ``&`` terminates the run containing ``index``."""
        last = len(self.commands) - 1
        while index < last and self.commands[index].connector != BACKGROUND:
            index += 1
        return index

    def pipelines(self) -> Iterator[tuple[int, int]]:
        i = 0
        while i < len(self.commands):
            end = self.pipeline_end(i)
            yield i, end
            i = end + 1


# --- Tokenization ---

def tokenize(line: str) -> list[Token]:
    """Split an input line into words, redirections and connectors.

    Quotes and backslash escapes are resolved here so the builder only ever
    sees final word text. ``2>`` is recognised only when the ``2`` touches
    the ``>``; ``echo 2 > f`` writes "2" to ``f``.
    """
    tokens: list[Token] = []
    buf: list[str] = []
    quoted = False
    in_single = False
    in_double = False
    i = 0
    n = len(line)

    def flush() -> None:
        nonlocal quoted
        if buf or quoted:
            tokens.append(Token(WORD, "".join(buf)))
            buf.clear()
            quoted = False

    while i < n:
        ch = line[i]
        if in_single:
            if ch == "'":
                in_single = False
            else:
                buf.append(ch)
            i += 1
            continue
        if in_double:
            if ch == '"':
                in_double = False
            elif ch == "\\" and i + 1 < n and line[i + 1] in '"\\$`':
                buf.append(line[i + 1])
                i += 2
                continue
            else:
                buf.append(ch)
            i += 1
            continue
        if ch == "'":
            in_single = quoted = True
            i += 1
            continue
        if ch == '"':
            in_double = quoted = True
            i += 1
            continue
        if ch == "\\":
            if i + 1 < n:
                buf.append(line[i + 1])
            i += 2
            continue
        if ch.isspace():
            flush()
            i += 1
            continue
        if ch == "#" and not buf and not quoted:
            break
        if ch in "<>":
            if ch == ">" and buf == ["2"] and not quoted:
                buf.clear()
                tokens.append(Token(REDIRECTION, "2>"))
            else:
                flush()
                tokens.append(Token(REDIRECTION, ch))
            i += 1
            continue
        if ch in ";&|":
            flush()
            pair = line[i:i + 2]
            if pair in ("&&", "||"):
                tokens.append(Token(_OPERATOR_TOKENS[pair], pair))
                i += 2
            else:
                tokens.append(Token(_OPERATOR_TOKENS[ch], ch))
                i += 1
            continue
        buf.append(ch)
        i += 1

    if in_single or in_double:
        raise ParseError("unterminated quote")
    flush()
    return tokens


# --- Chain building ---

class ChainBuilder:
    """Consume tokens one at a time and build a :class:`Chain`."""

    def __init__(self) -> None:
        self.chain = Chain()
        self._closed = True
        self._pending_redirect: Optional[str] = None

    def _current(self) -> Command:
        if self._closed:
            self.chain.commands.append(Command())
            self._closed = False
        return self.chain.commands[-1]

    def add(self, token: Token) -> None:
        if self._pending_redirect is not None:
            if token.kind != WORD:
                raise ParseError(f"missing target after '{self._pending_redirect}'")
            self._current().redirections.append(
                Redirection.from_operator(self._pending_redirect, token.text))
            self._pending_redirect = None
            return

        if token.kind == WORD:
            self._current().arguments.append(token.text)
        elif token.kind == REDIRECTION:
            self._current()
            self._pending_redirect = token.text
        elif token.kind in CONNECTORS:
            self._close(token.kind)
        else:
            raise ParseError(f"unknown token kind: {token.kind}")

    def _close(self, connector: str) -> None:
        symbol = _CONNECTOR_SYMBOLS[connector]
        if self._closed:
            raise ParseError(f"unexpected '{symbol}'")
        cmd = self.chain.commands[-1]
        if not cmd.arguments:
            raise ParseError(f"missing command before '{symbol}'")
        cmd.connector = connector
        self._closed = True

        if connector == BACKGROUND:
            cmd.is_background = True
            # An &&/|| run before '&' is one background job.
            j = len(self.chain.commands) - 2
            while j >= 0:
                prev = self.chain.commands[j]
                if prev.connector in (SEQUENCE, BACKGROUND):
                    break
                prev.is_background = True
                j -= 1

    def finish(self) -> Chain:
        if self._pending_redirect is not None:
            raise ParseError(f"missing target after '{self._pending_redirect}'")
        commands = self.chain.commands
        if not commands:
            return self.chain
        last = commands[-1]
        if not self._closed and not last.arguments:
            raise ParseError("missing command")
        if self._closed and last.connector in (AND, OR, PIPE):
            raise ParseError(f"unexpected end of line after '{_CONNECTOR_SYMBOLS[last.connector]}'")
        if last.connector == SEQUENCE:
            last.connector = END
        return self.chain


def build_chain(tokens: Iterable[Token]) -> Chain:
    builder = ChainBuilder()
    for token in tokens:
        builder.add(token)
    return builder.finish()


# --- Formatting (debug / test aid) ---

def format_chain(chain: Chain) -> str:
    lines: list[str] = []
    for cmd in chain:
        parts = list(cmd.arguments)
        for r in cmd.redirections:
            sym = {INPUT: "<", OUTPUT: ">", ERROR: "2>"}[r.direction]
            parts.append(f"{sym} {r.target}")
        flag = "BG " if cmd.is_background else "   "
        lines.append(f"{flag}{' '.join(parts)}  [{cmd.connector}]")
    return "\n".join(lines) if lines else "<empty>"
