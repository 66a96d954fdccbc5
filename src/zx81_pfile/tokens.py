"""
ZX81 Token Table
================

The ZX81 stores a BASIC program as a stream of single-byte tokens. A
byte is either a character of the ZX81 character set (which is not ASCII),
a keyword such as PRINT or " THEN ", or a control marker such as NEWLINE
(0x76) or the hidden-number marker (0x7E).

This module holds the canonical byte-to-text table and builds the regular
grammars used by the encoder to turn text back into bytes.

Text Conventions
----------------
- Block graphics use backslash escapes (``\\' ``, ``\\:.``, ``\\##``),
  following the ZXText2P conventions.
- Inverse characters (0x8B-0xBF) are written with a leading ``%``,
  e.g. ``%A``. The inverse graphics 0x80-0x8A have their own escapes.
- Bytes without a glyph render as a bracketed decimal, e.g. ``[67]``,
  so every byte value has a textual form.
- Keyword tokens carry the spaces the ZX81 prints around them
  (``"PRINT "``, ``" THEN "``). Keywords and the functions RND, INKEY$
  and PI clash with plain identifier text, so inside REM statements and
  quoted strings they are only recognized in bracketed form (``[GOTO]``).

Lexical Contexts
----------------
The same text tokenizes differently depending on where it appears:

- NORMAL: statement text; keywords are recognized by their spelling.
- REM: the remainder of a REM line; letters are always plain characters.
- QUOTED: inside a string literal; same grammar as REM.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable


# =============================================================================
# Token Constants
# =============================================================================

SPACE = 0x00
QUOTE = 0x0B
NEWLINE = 0x76
NUMBER = 0x7E
ESCAPED_QUOTE = 0xC0
DIM = 0xE9
REM = 0xEA
LET = 0xF1

INVERSE_MARKER = "%"

# Inverse characters that get the marker prepended
INVERSE_FIRST = 0x8B
INVERSE_LAST = 0xBF

# First and last statement keyword (LPRINT .. COPY)
COMMAND_FIRST = 0xE1
COMMAND_LAST = 0xFF


# =============================================================================
# Token Table
# =============================================================================

_UNDEFINED_0X43_0X7F = ("",) * (0x80 - 0x43)

_CHARSET_0X10_0X3F = (
    # 0x10
    "(", ")", ">", "<", "=", "+", "-", "*", "/", ";", ",", ".", "0", "1", "2", "3",
    # 0x20
    "4", "5", "6", "7", "8", "9", "A", "B", "C", "D", "E", "F", "G", "H", "I", "J",
    # 0x30
    "K", "L", "M", "N", "O", "P", "Q", "R", "S", "T", "U", "V", "W", "X", "Y", "Z",
)

TOKENS: tuple[str, ...] = (
    # 0x00
    " ", "\\' ", "\\ '", "\\''", "\\. ", "\\: ", "\\.'", "\\:'",
    "\\##", "\\,,", "\\~~", "\"", "#", "$", ":", "?",
    # 0x10 - 0x3F
    *_CHARSET_0X10_0X3F,
    # 0x40
    "RND", "INKEY$", "PI",
    # 0x43 - 0x7F (cursor and editing codes, no glyphs)
    *_UNDEFINED_0X43_0X7F,
    # 0x80 (inverse graphics)
    "\\::", "\\.:", "\\:.", "\\..", "\\':", "\\ :", "\\'.", "\\ .",
    "@@", "\\;;", "\\!!", "\"", "#", "$", ":", "?",
    # 0x90 - 0xBF (inverse characters)
    *_CHARSET_0X10_0X3F,
    # 0xC0
    "\\\"", "AT ", "TAB ", "", "CODE ", "VAL ", "LEN ", "SIN ",
    "COS ", "TAN ", "ASN ", "ACS ", "ATN ", "LN ", "EXP ", "INT ",
    # 0xD0
    "SQR ", "SGN ", "ABS ", "PEEK ", "USR ", "STR$ ", "CHR$ ", "NOT ",
    "**", " OR ", " AND ", "<=", ">=", "<>", " THEN ", " TO ",
    # 0xE0
    " STEP ", "LPRINT ", "LLIST ", "STOP ", "SLOW ", "FAST ", "NEW ", "SCROLL ",
    "CONT ", "DIM ", "REM ", "FOR ", "GOTO ", "GOSUB ", "INPUT ", "LOAD ",
    # 0xF0
    "LIST ", "LET ", "PAUSE ", "NEXT ", "POKE ", "PRINT ", "PLOT ", "RUN ",
    "SAVE ", "RAND ", "IF ", "CLS ", "UNPLOT ", "CLEAR ", "RETURN ", "COPY ",
)

assert len(TOKENS) == 256

# Keywords whose trailing space may also be a line end. The others would
# merge with the following token if a newline stood in for the space.
TOKENS_ALLOWING_TRAILING_NEWLINE: frozenset[str] = frozenset({
    "\\' ", "\\. ", "\\: ",
    "LPRINT ", "LLIST ", "STOP ", "SLOW ", "FAST ",
    "NEW ", "SCROLL ", "CONT ", "REM ", "LIST ", "PRINT ",
    "RUN ", "RAND ", "CLS ", "CLEAR ", "RETURN ", "COPY ",
})


class LexContext(Enum):
    """Lexical context of the encoder and decoder scans."""
    NORMAL = auto()
    REM = auto()
    QUOTED = auto()


# =============================================================================
# Byte Classification
# =============================================================================

def is_ambiguous(byte: int) -> bool:
    """
    Check if a token's spelling clashes with plain identifier text.

    These are the keyword tokens (0xC1 and up, except the unused 0xC3)
    and the functions RND, INKEY$ and PI.
    """
    return (byte >= 0xC1 and byte != 0xC3) or 0x40 <= byte <= 0x42


def is_command(byte: int) -> bool:
    """Check if a token may start a BASIC statement."""
    return COMMAND_FIRST <= byte <= COMMAND_LAST


def is_letter(byte: int) -> bool:
    """Check for the (non-inverse) letters A-Z."""
    return 0x26 <= byte <= 0x3F


def is_digit(byte: int) -> bool:
    """Check for the (non-inverse) digits 0-9."""
    return 0x1C <= byte <= 0x25


def text_of(byte: int) -> str:
    """
    Get the display text of a token.

    Args:
        byte: Token value (0-255)

    Returns:
        The canonical spelling, with the inverse marker for 0x8B-0xBF,
        or "[N]" for bytes without a glyph.

    Raises:
        ValueError: If byte is out of range
    """
    if not 0 <= byte <= 0xFF:
        raise ValueError(f"Token must be 0-255, got {byte}")
    text = TOKENS[byte]
    if not text:
        return f"[{byte}]"
    if INVERSE_FIRST <= byte <= INVERSE_LAST:
        return INVERSE_MARKER + text
    return text


def bracketed_text(byte: int) -> str:
    """Get the bracketed form of a token, e.g. "[GOTO]" or "[195]"."""
    text = text_of(byte)
    if text.startswith("["):
        return text
    return f"[{text.strip()}]"


# =============================================================================
# Grammar Construction
# =============================================================================

def _symbol_pattern(symbol: str, allow_trailing_newline: frozenset[str]) -> str:
    """Regex for one symbol, with its trailing delimiter rule applied."""
    if symbol.endswith(" ") and len(symbol) > 1:
        delimiter = r"\s" if symbol in allow_trailing_newline else r"[ \t]"
        return re.escape(symbol[:-1]) + delimiter
    pattern = re.escape(symbol)
    if len(symbol) > 1 and symbol[0].isalpha() and symbol[-1].isalnum():
        # RND and PI must not swallow the start of an identifier
        pattern += r"(?![A-Z0-9])"
    return pattern


def build_grammar(
    symbols: Iterable[str],
    allow_trailing_newline: frozenset[str] = TOKENS_ALLOWING_TRAILING_NEWLINE,
) -> re.Pattern:
    """
    Build a longest-match-first tokenizer pattern.

    Symbols are sorted by descending length, so the regex alternation
    always prefers "PRINT " over "P". A symbol's trailing space is
    generalized to any whitespace character for symbols in
    allow_trailing_newline, and to space or tab otherwise.

    Args:
        symbols: Token spellings to recognize
        allow_trailing_newline: Spellings that may end a line

    Returns:
        A compiled, case-insensitive pattern for use with match(text, pos)
    """
    ordered = sorted(set(symbols), key=len, reverse=True)
    alternatives = "|".join(
        _symbol_pattern(symbol, allow_trailing_newline) for symbol in ordered
    )
    return re.compile(f"(?:{alternatives})", re.IGNORECASE)


@dataclass(frozen=True)
class Grammar:
    """
    A compiled tokenizer grammar and its symbol table.

    Attributes:
        pattern: Longest-match alternation over all symbols
        symbols: Map of upper-case spelling to token value
    """
    pattern: re.Pattern
    symbols: dict[str, int]

    def lookup(self, matched: str) -> int:
        """
        Map text matched by the pattern to its token value.

        The matched leading/trailing whitespace character (which may be a
        tab or newline) is normalized to a space before lookup.

        Raises:
            KeyError: If the text is not a symbol of this grammar
        """
        if matched[-1].isspace():
            matched = matched[:-1] + " "
        if matched[0].isspace():
            matched = " " + matched[1:]
        return self.symbols[matched.upper()]


def _create_grammars() -> tuple[Grammar, Grammar]:
    normal: dict[str, int] = {}
    rem: dict[str, int] = {}
    for byte in range(256):
        text = text_of(byte)
        normal[text] = byte
        if is_ambiguous(byte):
            normal[bracketed_text(byte)] = byte
            rem[bracketed_text(byte)] = byte
        else:
            rem[text] = byte
    return (
        Grammar(build_grammar(normal), normal),
        Grammar(build_grammar(rem), rem),
    )


NORMAL_GRAMMAR, REM_GRAMMAR = _create_grammars()


def grammar_for(context: LexContext) -> Grammar:
    """Select the grammar used in a lexical context."""
    return NORMAL_GRAMMAR if context is LexContext.NORMAL else REM_GRAMMAR


def char_token(char: str) -> int:
    """
    Map a single ZX81 character (letter, digit, punctuation) to its token.

    Raises:
        KeyError: If the character has no single-byte token
    """
    return NORMAL_GRAMMAR.symbols[char.upper()]
