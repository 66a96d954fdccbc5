"""
P-file to BASIC Text Decoder
============================

This module turns a ZX81 P-file back into editable BASIC text, the
inverse of zx81_pfile.encoder.

Output Format
-------------
The text starts with a comment header holding everything the program
listing cannot show, followed by the listing itself:

    #!basic-start=20

    #!dfile-collapsed
    #!dfile: HELLO

    #!basic-vars:[38,0,0,0,0,0]

    #!system-vars:FRAMES=12345

    10 REM [GOTO]
    20 PRINT "HELLO"; 2.5

Faithfulness
------------
Decoding a P-file and encoding the text again gives back the same bytes
wherever the format allows. Where plain text would be read back
differently, the decoder writes bracketed codes instead:

- keyword tokens inside REM lines and strings become [GOTO];
- a hidden number that does not match the literal in front of it is
  written out as [126][b0]..[b4][#value], and the literal's characters
  as [N] codes;
- digits that would be read as a number literal but carry no hidden
  number become [N] codes;
- tokens that would merge with their neighbour (RND before a letter,
  '<' before '=') are bracketed.

Broken input never raises. Problems are reported as '#' comments in the
text, and decoding continues with the next line where possible.

Usage
-----
    >>> from zx81_pfile.decoder import decode_program, decode_pfile
    >>> decode_program(bytes([0, 1, 2, 0, 0xEA, 0x76]))
    '1 REM \\n'
    >>> text = decode_pfile(Path("game.p").read_bytes())
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from zx81_pfile.errors import FloatRangeError, PfileFormatError, Zx81Error
from zx81_pfile.p81 import read_p81_filename
from zx81_pfile.sysvars import (
    PROGRAM_ADDRESS,
    SYSVARS_ADDRESS,
    SYSVARS_SIZE,
    SystemVariables,
    get_variable,
)
from zx81_pfile.tokens import (
    NEWLINE,
    NORMAL_GRAMMAR,
    NUMBER,
    QUOTE,
    REM,
    SPACE,
    bracketed_text,
    is_ambiguous,
    is_letter,
    text_of,
)
from zx81_pfile.zxfloat import FLOAT_SIZE, decode_float, encode_float

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DFILE_ROWS = 24
DFILE_EXPANDED_SIZE = 1 + DFILE_ROWS * 33
VARIABLES_END = 0x80
DEFAULT_VARS_PER_LINE = 20

# Characters of a numeric literal: digits, '.', 'E', '+', '-'
_LITERAL_BYTES = frozenset(range(0x1C, 0x26)) | {0x1B, 0x2A, 0x15, 0x16}

_LITERAL = re.compile(r"(?=\.?\d)\d*(?:\.\d+)?(?:E[+-]?\d+)?", re.IGNORECASE)


# =============================================================================
# Line Rendering
# =============================================================================

@dataclass
class _Piece:
    """Rendered text of one token, or of a hidden number (byte == NUMBER)."""
    byte: int
    text: str
    normal: bool
    raw: bytes = b""


def _scan_literals(text: str, identifier: bool) -> list[tuple[int, int]]:
    """
    Find the spans of text the encoder would read as numeric literals.

    Args:
        text: Run of digit/point/exponent characters
        identifier: True if the run directly follows a variable name

    Returns:
        (start, end) spans in text order
    """
    spans = []
    pos = 0
    while pos < len(text):
        if not identifier:
            match = _LITERAL.match(text, pos)
            if match:
                spans.append((pos, match.end()))
                pos = match.end()
                continue
        char = text[pos]
        identifier = char.isalpha() or (char.isdigit() and identifier)
        pos += 1
    return spans


def _following_text(pieces: list[_Piece], index: int) -> str:
    """Rendered text of the rest of the line, as the encoder will see it."""
    return "".join(piece.text for piece in pieces[index:])


def _bracket_bytes(pieces: list[_Piece]) -> None:
    for piece in pieces:
        piece.text = f"[{piece.byte}]"


def _explicit_number(raw: bytes) -> str:
    value = decode_float(raw)
    codes = "".join(f"[{b}]" for b in raw)
    return f"[{NUMBER}]{codes}[#{value:.10g}]"


def _literal_matches(literal: str, following: str, raw: bytes) -> bool:
    """Check that literal re-encodes to exactly the hidden bytes."""
    match = _LITERAL.match(literal + following)
    if match is None or match.end() != len(literal):
        return False
    try:
        return encode_float(float(literal)) == raw
    except FloatRangeError:
        return False


def _resolve_numbers(pieces: list[_Piece]) -> None:
    """
    Decide how every numeric literal and hidden number is written.

    A hidden number is left implicit only when the literal in front of
    it reads back as exactly the same five bytes.
    """
    index = 0
    while index < len(pieces):
        piece = pieces[index]
        in_run = piece.normal and piece.byte in _LITERAL_BYTES and len(piece.text) == 1
        if not in_run:
            if piece.byte == NUMBER and piece.normal and piece.raw:
                piece.text = _explicit_number(piece.raw)
            index += 1
            continue

        start = index
        while (
            index < len(pieces)
            and pieces[index].normal
            and pieces[index].byte in _LITERAL_BYTES
            and len(pieces[index].text) == 1
        ):
            index += 1
        run = pieces[start:index]
        run_text = "".join(p.text for p in run)

        previous = pieces[start - 1] if start > 0 else None
        identifier = previous is not None and previous.normal and is_letter(previous.byte)
        spans = _scan_literals(run_text, identifier)

        hidden = None
        if index < len(pieces) and pieces[index].byte == NUMBER and pieces[index].raw:
            hidden = pieces[index]
            index += 1

        final = None
        if hidden is not None and spans and spans[-1][1] == len(run_text):
            final = spans.pop()
        for begin, end in spans:
            _bracket_bytes(run[begin:end])

        if hidden is None:
            continue
        if final is not None:
            literal = run_text[final[0]:]
            if _literal_matches(literal, _following_text(pieces, index), hidden.raw):
                hidden.text = ""
                continue
            _bracket_bytes(run[final[0]:])
            logger.debug(
                f"Hidden number {decode_float(hidden.raw)} does not match literal '{literal}'"
            )
        hidden.text = _explicit_number(hidden.raw)


def _separate_merging_tokens(pieces: list[_Piece]) -> None:
    """
    Bracket tokens the encoder would read differently in context.

    The normal grammar is matched against the rest of the line at every
    statement token, as the encoder does. A token that reads back as a
    longer token (the letters G,O,T,O before a space) or a shorter one
    (RND before a letter) is written in brackets.
    """
    changed = True
    while changed:
        changed = False
        for index in range(1, len(pieces)):
            piece = pieces[index]
            if (
                not piece.normal
                or not piece.text
                or piece.text.startswith("[")
                or piece.byte == QUOTE
            ):
                continue
            rest = "".join(p.text for p in pieces[index:]) + "\n"
            match = NORMAL_GRAMMAR.pattern.match(rest)
            if (
                match
                and match.end() == len(piece.text)
                and NORMAL_GRAMMAR.lookup(match.group(0)) == piece.byte
            ):
                continue
            if is_ambiguous(piece.byte):
                piece.text = bracketed_text(piece.byte)
            else:
                piece.text = f"[{piece.byte}]"
            changed = True


def render_tokens(tokens: bytes, bracketized: bool = False) -> str:
    """
    Render the tokens of one BASIC line (without line number and NEWLINE).

    Args:
        tokens: Token bytes of the line
        bracketized: Bracket keyword tokens everywhere, not only inside
            REM lines and strings

    Returns:
        The line text

    Raises:
        PfileFormatError: If a hidden number is cut short
    """
    pieces: list[_Piece] = []
    in_rem = False
    in_quotes = False
    index = 0

    while index < len(tokens):
        byte = tokens[index]
        normal = not in_rem and not in_quotes

        if normal and byte == NUMBER:
            raw = bytes(tokens[index + 1:index + 1 + FLOAT_SIZE])
            if len(raw) < FLOAT_SIZE:
                raise PfileFormatError(
                    f"Number at token {index} cut short ({len(raw)} of {FLOAT_SIZE} bytes)"
                )
            pieces.append(_Piece(NUMBER, "", True, raw))
            index += 1 + FLOAT_SIZE
            continue

        if index == 0:
            text = text_of(byte)
            in_rem = byte == REM
        elif is_ambiguous(byte) and (not normal or bracketized):
            text = bracketed_text(byte)
        else:
            text = text_of(byte)

        if byte == QUOTE and not in_rem:
            if in_quotes or QUOTE in tokens[index + 1:]:
                in_quotes = not in_quotes
            else:
                # A string that never closes could not be read back
                text = f"[{QUOTE}]"

        pieces.append(_Piece(byte, text, normal))
        index += 1

    _resolve_numbers(pieces)
    _separate_merging_tokens(pieces)

    if in_rem and len(pieces) > 1 and pieces[-1].byte == SPACE:
        pieces[-1].text = f"[{SPACE}]"

    return "".join(piece.text for piece in pieces)


# =============================================================================
# Program Decoding
# =============================================================================

def _line_offsets(program: bytes) -> list[int]:
    """Offsets of all complete line records."""
    offsets = []
    pos = 0
    while len(program) - pos > 4:
        length = int.from_bytes(program[pos + 2:pos + 4], "little")
        if length > len(program) - pos - 4:
            break
        offsets.append(pos)
        pos += 4 + length
    return offsets


def decode_program(data: bytes, bracketized: bool = False) -> str:
    """
    Convert a program image into BASIC text.

    Never raises; problems become '#' comments in the text.

    Args:
        data: Line records (big-endian number, little-endian length,
            tokens, NEWLINE)
        bracketized: Bracket keyword tokens everywhere

    Returns:
        One text line per record
    """
    out: list[str] = []
    pos = 0

    while len(data) - pos > 4:
        number = int.from_bytes(data[pos:pos + 2], "big")
        length = int.from_bytes(data[pos + 2:pos + 4], "little")
        remaining = len(data) - pos - 4
        if length > remaining:
            logger.warning(f"Line {number}: length {length} exceeds remaining {remaining} bytes")
            out.append(
                f"\n# Error: Line {number}: length {length} exceeds "
                f"the remaining {remaining} bytes.\n"
            )
            pos = len(data)
            break

        record = data[pos + 4:pos + 4 + length]
        pos += 4 + length

        try:
            if not record:
                raise PfileFormatError("Line has length 0")
            out.append(f"{number} {render_tokens(record[:-1], bracketized)}\n")
            if record[-1] != NEWLINE:
                out.append(
                    f"# Note: Line {number} did not end with {NEWLINE} (END token) "
                    f"but with {record[-1]}.\n"
                )
        except Zx81Error as e:
            logger.warning(f"Line {number}: {e}")
            out.append(f"\n# Error: Line {number}: {e}\n")

    if pos < len(data):
        out.append("\n# Warning: A few bytes could not be converted.\n")

    return "".join(out)


# =============================================================================
# P-file Decoder
# =============================================================================

def _render_screen_row(row: bytes, mark_trailing_space: bool) -> str:
    texts = [bracketed_text(b) if is_ambiguous(b) else text_of(b) for b in row]
    if mark_trailing_space and texts and row[-1] == SPACE:
        texts[-1] = f"[{SPACE}]"
    return "".join(texts)


def _format_byte_list(data: bytes) -> str:
    return "[" + ",".join(str(b) for b in data) + "]"


class PfileDecoder:
    """
    Splits a P-file into its memory areas and converts it to text.

    Example:
        >>> decoder = PfileDecoder.from_file("game.p")
        >>> print(decoder.header())
        >>> print(decoder.program_text())
    """

    def __init__(
        self,
        data: bytes,
        bracketized: bool = False,
        vars_per_line: int = DEFAULT_VARS_PER_LINE,
    ):
        """
        Initialize the decoder.

        Args:
            data: P-file contents (starting with the system variables)
            bracketized: Bracket keyword tokens everywhere
            vars_per_line: Bytes per '#!basic-vars:' line

        Raises:
            PfileFormatError: If data is too short for the system variables
        """
        if len(data) < SYSVARS_SIZE:
            raise PfileFormatError(
                f"P-file too short: {len(data)} bytes, "
                f"system variables need {SYSVARS_SIZE}"
            )
        self.data = bytes(data)
        self.bracketized = bracketized
        self.vars_per_line = max(1, vars_per_line)
        self.system_variables = SystemVariables.from_bytes(self.data)

        self.dfile_address = self.system_variables.get("D_FILE")
        self.vars_address = self.system_variables.get("VARS")
        self.e_line_address = self.system_variables.get("E_LINE")
        self.nxtlin = self.system_variables.get("NXTLIN")

        dfile_index = self._index(self.dfile_address, SYSVARS_SIZE)
        vars_index = self._index(self.vars_address, dfile_index)
        e_line_index = self._index(self.e_line_address, vars_index)
        self.program = self.data[SYSVARS_SIZE:dfile_index]
        self.dfile = self.data[dfile_index:vars_index]
        self.variables = self.data[vars_index:e_line_index]

        logger.debug(
            f"P-file regions: program {len(self.program)}, "
            f"display {len(self.dfile)}, variables {len(self.variables)} bytes"
        )

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> "PfileDecoder":
        """Load a .p file, or a .p81 file (detected by its suffix)."""
        path = Path(path)
        data = path.read_bytes()
        if path.suffix.lower() == ".p81":
            return cls.from_p81(data, **kwargs)
        return cls(data, **kwargs)

    @classmethod
    def from_p81(cls, data: bytes, **kwargs) -> "PfileDecoder":
        """Create a decoder for a cassette image with a filename prefix."""
        length, name = read_p81_filename(data)
        logger.debug(f"P81 filename '{name}' ({length} bytes)")
        return cls(data[length:], **kwargs)

    def _index(self, address: int, minimum: int) -> int:
        """Convert an address to a file offset, clamped to the data."""
        return min(max(address - SYSVARS_ADDRESS, minimum), len(self.data))

    # -------------------------------------------------------------------------
    # Regions
    # -------------------------------------------------------------------------

    @property
    def dfile_collapsed(self) -> bool:
        return len(self.dfile) < DFILE_EXPANDED_SIZE

    def screen_rows(self) -> list[bytes]:
        """Rows of the display file, without NEWLINE terminators."""
        body = self.dfile[1:]
        if body.endswith(bytes([NEWLINE])):
            body = body[:-1]
        if not body and len(self.dfile) <= 1:
            return []
        return body.split(bytes([NEWLINE]))

    def outside_program(self) -> bytes:
        """BASIC lines stored beyond the display file (NXTLIN past D_FILE)."""
        if self.nxtlin <= self.dfile_address:
            return b""
        return self.data[self._index(self.nxtlin, SYSVARS_SIZE):]

    # -------------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------------

    def header(self) -> str:
        """Reconstruct the comment header directives."""
        parts = [
            self._basic_start_header(),
            self._dfile_header(),
            self._variables_header(),
            self._system_variables_header(),
        ]
        return "".join(part + "\n" for part in parts if part)

    def _basic_start_header(self) -> str:
        if self.nxtlin == self.dfile_address:
            return ""
        offset = self.nxtlin - PROGRAM_ADDRESS
        if offset in _line_offsets(self.program):
            number = int.from_bytes(self.program[offset:offset + 2], "big")
            return f"#!basic-start={number}\n"
        if self.nxtlin > self.dfile_address:
            return (
                f"# Note: NXTLIN (0x{self.nxtlin:04X}) points past the "
                f"display file; program continues outside the BASIC area.\n"
            )
        return f"# Note: NXTLIN (0x{self.nxtlin:04X}) does not point to a line start.\n"

    def _dfile_header(self) -> str:
        collapsed = self.dfile_collapsed
        rows = self.screen_rows()
        note = ""
        if self.dfile and len(rows) != DFILE_ROWS:
            note = f"# Note: Display file has {len(rows)} rows instead of {DFILE_ROWS}.\n"
        if not collapsed:
            rows = [row.rstrip(bytes([SPACE])) for row in rows]
        while rows and not rows[-1]:
            rows.pop()

        lines = ["#!dfile-collapsed"] if collapsed else []
        lines += [f"#!dfile:{_render_screen_row(row, collapsed)}" for row in rows]
        if not lines:
            return note
        return note + "\n".join(lines) + "\n"

    def _variables_header(self) -> str:
        variables = self.variables
        note = ""
        if variables.endswith(bytes([VARIABLES_END])):
            variables = variables[:-1]
        else:
            note = f"# Note: Variables area does not end with {VARIABLES_END}.\n"
        lines = [
            f"#!basic-vars:{_format_byte_list(variables[i:i + self.vars_per_line])}\n"
            for i in range(0, len(variables), self.vars_per_line)
        ]
        return note + "".join(lines)

    def _system_variables_header(self) -> str:
        diff = SystemVariables.create_default().compare(self.system_variables)
        lines = []
        for name, raw in diff.items():
            if get_variable(name).size <= 2:
                value = str(int.from_bytes(raw, "little"))
            else:
                value = _format_byte_list(raw)
            lines.append(f"#!system-vars:{name}={value}\n")
        return "".join(lines)

    def program_text(self) -> str:
        """Decode the BASIC program area."""
        text = decode_program(self.program, self.bracketized)
        outside = self.outside_program()
        if outside:
            listing = decode_program(outside, self.bracketized)
            commented = "".join(f"# {line}\n" for line in listing.splitlines())
            text += (
                f"\n# BASIC program outside BASIC area at 0x{self.nxtlin:04X}:\n"
                + commented
            )
        return text

    def to_text(self) -> str:
        """Header followed by the program listing."""
        return self.header() + self.program_text()


# =============================================================================
# Convenience Functions
# =============================================================================

def decode_header(data: bytes, vars_per_line: int = DEFAULT_VARS_PER_LINE) -> str:
    """Reconstruct only the comment header of a P-file."""
    try:
        return PfileDecoder(data, vars_per_line=vars_per_line).header()
    except PfileFormatError as e:
        return f"# Error: {e}\n"


def decode_pfile(
    data: bytes,
    bracketized: bool = False,
    vars_per_line: int = DEFAULT_VARS_PER_LINE,
) -> str:
    """
    Convert a whole P-file to text (header + listing).

    Never raises for malformed content.
    """
    try:
        return PfileDecoder(data, bracketized, vars_per_line).to_text()
    except PfileFormatError as e:
        logger.warning(f"Cannot decode P-file: {e}")
        return f"# Error: {e}\n"


def decode_p81(
    data: bytes,
    bracketized: bool = False,
    vars_per_line: int = DEFAULT_VARS_PER_LINE,
) -> str:
    """Convert a .p81 cassette image to text."""
    length, _ = read_p81_filename(data)
    return decode_pfile(data[length:], bracketized, vars_per_line)
