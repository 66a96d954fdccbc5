"""
BASIC Text to P-file Encoder
============================

This module converts ZX81 BASIC source text into a P-file, the memory
image the ZX81 loads from tape.

Source Format
-------------
The text holds program lines, blank lines, ``#`` comment lines and
``#!`` header directives:

    #!basic-start=20
    #!dfile: HELLO
    #!basic-vars:[1,2,255]
    #!system-vars:FRAMES=12345

    10 REM [!include loader.bin]
    20 PRINT "HELLO"; 2.5
    30 GOTO 20

A line ending in a backslash continues on the next line. Inside a line,
bracketed special codes insert bytes directly:

    [#comment]          nothing (inline comment)
    [N]                 the byte N (0-255)
    [!block=N]          N zero bytes
    [!include path]     the bytes of a file

Encoding Rules
--------------
- Every line starts with a line number (0-9999, strictly increasing)
  followed by a statement keyword.
- After REM the rest of the line is stored as characters; keywords are
  only recognized in bracketed form ([GOTO]). Quoted strings use the
  same rule.
- Every numeric literal is stored twice: its characters, then the
  hidden-number marker 0x7E and the 5-byte float value.
- Digits directly following a letter are part of a variable name (A1)
  and do not start a numeric literal.

P-file Layout
-------------
    system variables (116 bytes, at 16393)
    program          (at 16509)
    display file     (leading NEWLINE + 24 rows)
    variables        (terminated by 0x80)

Usage
-----
    >>> from zx81_pfile.encoder import encode_program, encode_pfile
    >>> encode_program("10 PRINT\\n")
    b'\\x00\\n\\x02\\x00\\xf5v'
    >>> pfile = encode_pfile(Path("game.bas").read_text())
"""

import logging
import re
from pathlib import Path
from typing import Callable, Optional, Union

from zx81_pfile.errors import (
    BasicSyntaxError,
    Diagnostic,
    FloatRangeError,
    IncludeError,
    PfileFormatError,
    SourceLocation,
    SystemVariableError,
)
from zx81_pfile.sysvars import PROGRAM_ADDRESS, SystemVariables
from zx81_pfile.tokens import (
    DIM,
    LET,
    NEWLINE,
    NORMAL_GRAMMAR,
    NUMBER,
    QUOTE,
    REM,
    LexContext,
    char_token,
    grammar_for,
    is_command,
    is_digit,
    is_letter,
    text_of,
)
from zx81_pfile.zxfloat import encode_float

logger = logging.getLogger(__name__)

FileReader = Callable[[str], bytes]
WarningHandler = Callable[[Diagnostic], None]


# =============================================================================
# Layout Constants
# =============================================================================

DFILE_ROWS = 24
DFILE_COLUMNS = 32
VARIABLES_END = 0x80
MAX_LINE_NUMBER = 9999
MAX_BLOCK_SIZE = 0x7FFF


# =============================================================================
# Lexical Patterns
# =============================================================================

_CONTINUATION = re.compile(r"\\[ \t]*\n")
_SPACING = re.compile(r"[ \t]+(?:\\[ \t]*\n[ \t]*)*")
_INLINE_SPACE = re.compile(r"[ \t]*")
_SKIPPABLE = re.compile(r"(?:\s+|\\[ \t]*\n|#(?!!)[^\n]*\n)*")
_LINE_NUMBER = re.compile(r"\d+")
_NUMBER = re.compile(r"(?=\.?\d)\d*(?:\.\d+)?(?:E[+-]?\d+)?", re.IGNORECASE)
_IDENTIFIER = re.compile(r"[ \t]*([A-Z][A-Z0-9]*)", re.IGNORECASE)
_SPECIAL_CODE = re.compile(
    r"\[(#[^\]\n]*|\d+|!block\s*=\s*(\d+)\s*|!include\s+([^\]\n]+?)\s*)\]",
    re.IGNORECASE,
)
_HEADER = re.compile(
    r"#![ \t]*(basic-start[ \t]*(=)?[ \t]*|dfile-collapsed\b|dfile:|"
    r"basic-vars:[ \t]*|system-vars:[ \t]*|[^\n]*)",
    re.IGNORECASE,
)
_SYSVAR_NAME = re.compile(r"([A-Z_][A-Z0-9_]*|\d+)[ \t]*=[ \t]*", re.IGNORECASE)
_INTEGER = re.compile(r"0x[0-9A-F]+|\$[0-9A-F]+|\d+", re.IGNORECASE)


def file_reader(base_dir: Union[str, Path, None] = None) -> FileReader:
    """
    Create a file-read capability for [!include] codes.

    Args:
        base_dir: Directory relative paths are resolved against
            (default: the current working directory)

    Returns:
        A function mapping a path to the file's bytes
    """
    base = Path(base_dir) if base_dir is not None else Path.cwd()

    def read(path: str) -> bytes:
        return (base / path).read_bytes()

    return read


# =============================================================================
# Encoder
# =============================================================================

class BasicEncoder:
    """
    Converts one BASIC source text into a program image or P-file.

    The encoder walks the text once with a cursor (offset, 0-based line,
    0-based column). The first error aborts the conversion with a
    BasicSyntaxError; suspicious but legal input produces warnings.

    Attributes:
        filename: Name used in diagnostics
        warnings: Diagnostics collected by the last conversion
        system_variables: Record filled by the last conversion

    Example:
        >>> encoder = BasicEncoder(text, on_warning=print)
        >>> pfile = encoder.create_pfile()
    """

    def __init__(
        self,
        source: str,
        filename: str = "<input>",
        read_file: Optional[FileReader] = None,
        on_warning: Optional[WarningHandler] = None,
    ):
        """
        Initialize the encoder.

        Args:
            source: BASIC text; CR characters are dropped and a final
                newline is added when missing
            filename: Name used in diagnostics
            read_file: File-read capability for [!include] codes
                (default: read relative to the working directory)
            on_warning: Called with every warning as it is found
        """
        source = source.replace("\r", "")
        if not source.endswith("\n"):
            source += "\n"
        self._source = source
        self._lines = source.split("\n")
        self.filename = filename
        self._read_file = read_file if read_file is not None else file_reader()
        self._on_warning = on_warning
        self._reset()

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        include_dir: Union[str, Path, None] = None,
        on_warning: Optional[WarningHandler] = None,
    ) -> "BasicEncoder":
        """
        Create an encoder for a source file.

        Includes are resolved relative to include_dir, or to the source
        file's directory when not given.
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        base = include_dir if include_dir is not None else path.parent
        return cls(text, filename=str(path), read_file=file_reader(base), on_warning=on_warning)

    def _reset(self) -> None:
        self._pos = 0
        self._line = 0
        self._column = 0
        self._program = bytearray()
        self._last_line_number = -1
        self._basic_start: Optional[int] = None
        self._basic_start_location: Optional[tuple[int, int]] = None
        self._next_line_offset: Optional[int] = None
        self._dfile_rows: list[bytes] = []
        self._dfile_collapsed = False
        self._variables = bytearray()
        self.system_variables = SystemVariables.create_default()
        self.warnings: list[Diagnostic] = []

    # =========================================================================
    # Public Interface
    # =========================================================================

    def encode_program(self) -> bytes:
        """
        Convert the whole text and return the program image.

        Header directives are processed as well; their results are kept
        for create_pfile().

        Raises:
            BasicSyntaxError: On the first error in the text
        """
        self._reset()

        while True:
            self._skip(_SKIPPABLE)
            if self._pos >= len(self._source):
                break
            if self._source.startswith("#!", self._pos):
                self._parse_directive()
            else:
                self._parse_line()

        if self._basic_start is not None:
            line, column = self._basic_start_location
            raise self._error(
                f"Line number {self._basic_start} given by 'basic-start' not found",
                line, column,
            )

        logger.debug(
            f"Encoded {len(self._program)} program bytes, "
            f"{len(self.warnings)} warning(s)"
        )
        return bytes(self._program)

    def create_pfile(self) -> bytes:
        """
        Convert the text and assemble the complete P-file.

        Raises:
            BasicSyntaxError: On the first error in the text
            PfileFormatError: If the result does not fit in ZX81 memory
        """
        program = self.encode_program()
        dfile = self.create_dfile(self._dfile_rows, self._dfile_collapsed)
        variables = bytes(self._variables) + bytes([VARIABLES_END])

        dfile_address = PROGRAM_ADDRESS + len(program)
        vars_address = dfile_address + len(dfile)
        e_line = vars_address + len(variables)
        if e_line + 5 > 0xFFFF:
            raise PfileFormatError(
                f"P-file too large: memory would end at {e_line}"
            )

        if self._next_line_offset is None:
            nxtlin = dfile_address
        else:
            nxtlin = PROGRAM_ADDRESS + self._next_line_offset
        self.system_variables.set_layout(dfile_address, vars_address, e_line, nxtlin)

        pfile = bytes(self.system_variables) + program + dfile + variables
        logger.info(
            f"Created P-file: {len(pfile)} bytes "
            f"(program {len(program)}, display {len(dfile)}, variables {len(variables)})"
        )
        return pfile

    @staticmethod
    def create_dfile(rows: list[bytes], collapsed: bool = False) -> bytes:
        """
        Build a display file from screen rows.

        Args:
            rows: Row contents; rows beyond 24 and columns beyond 32 are
                dropped, missing rows are empty
            collapsed: Keep only the supplied characters instead of
                padding every row to 32 spaces

        Returns:
            Leading NEWLINE followed by 24 NEWLINE-terminated rows
        """
        data = bytearray([NEWLINE])
        for index in range(DFILE_ROWS):
            row = rows[index][:DFILE_COLUMNS] if index < len(rows) else b""
            data += row
            if not collapsed:
                data += bytes(DFILE_COLUMNS - len(row))
            data.append(NEWLINE)
        return bytes(data)

    # =========================================================================
    # Cursor Helpers
    # =========================================================================

    def _peek(self) -> str:
        """Current character; the end of text reads as a newline."""
        if self._pos < len(self._source):
            return self._source[self._pos]
        return "\n"

    def _advance(self, count: int) -> None:
        text = self._source[self._pos:self._pos + count]
        newlines = text.count("\n")
        if newlines:
            self._line += newlines
            self._column = len(text) - text.rfind("\n") - 1
        else:
            self._column += len(text)
        self._pos += len(text)

    def _skip(self, pattern: re.Pattern) -> str:
        """Consume whatever pattern matches here and return it."""
        match = pattern.match(self._source, self._pos)
        if not match:
            return ""
        self._advance(match.end() - self._pos)
        return match.group(0)

    def _location(self, line: Optional[int] = None, column: Optional[int] = None) -> SourceLocation:
        return SourceLocation(
            self.filename,
            self._line if line is None else line,
            self._column if column is None else column,
        )

    def _source_line(self, line: int) -> Optional[str]:
        if 0 <= line < len(self._lines):
            return self._lines[line]
        return None

    def _error(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> BasicSyntaxError:
        """Create an error at the given or current position, with a snippet."""
        rest = self._source[self._pos:].split("\n", 1)[0]
        snippet = rest[:20]
        if snippet:
            if len(rest) > 20:
                snippet += "..."
            message = f"{message}: '{snippet}'"
        location = self._location(line, column)
        return BasicSyntaxError(message, location, self._source_line(location.line))

    def _warn(self, message: str, line: int, column: int) -> None:
        diagnostic = Diagnostic(message, self._location(line, column))
        self.warnings.append(diagnostic)
        logger.debug(f"Warning: {diagnostic}")
        if self._on_warning is not None:
            self._on_warning(diagnostic)

    # =========================================================================
    # Header Directives
    # =========================================================================

    def _parse_directive(self) -> None:
        """Handle one '#!' header line."""
        match = _HEADER.match(self._source, self._pos)
        command = match.group(1)
        keyword = command.strip().lower()
        line, column = self._line, self._column

        if keyword.startswith("basic-start"):
            self._advance(match.end() - self._pos)
            if not match.group(2):
                raise self._error("Expected '=' after basic-start")
            number = self._read_line_number()
            if number <= self._last_line_number:
                raise self._error(
                    f"basic-start line {number} must be higher than "
                    f"the last line number {self._last_line_number}",
                    line, column,
                )
            self._basic_start = number
            self._basic_start_location = (line, column)
            logger.debug(f"basic-start: {number}")
        elif keyword == "dfile-collapsed":
            self._advance(match.end() - self._pos)
            self._dfile_collapsed = True
        elif keyword == "dfile:":
            self._advance(match.end() - self._pos)
            self._dfile_rows.append(self._read_dfile_row())
            return
        elif keyword == "basic-vars:":
            self._advance(match.end() - self._pos)
            self._variables += self._read_byte_list()
        elif keyword == "system-vars:":
            self._advance(match.end() - self._pos)
            self._read_system_variable()
        elif keyword:
            self._advance(match.start(1) - self._pos)
            raise self._error(f"Unknown command in header '{keyword}'")
        else:
            self._advance(match.end() - self._pos)

        self._skip(_INLINE_SPACE)
        if self._peek() != "\n":
            raise self._error("Expected newline")

    def _read_dfile_row(self) -> bytes:
        row = bytearray()
        while self._peek() != "\n":
            line, column = self._line, self._column
            data = self._read_rem_token()
            if NEWLINE in data:
                raise self._error(
                    f"Screen row cannot contain {NEWLINE} (END token)", line, column
                )
            row += data
        return bytes(row)

    def _read_integer(self, what: str) -> int:
        text = self._skip(_INTEGER)
        if not text:
            raise self._error(f"Expected {what}")
        if text[0] == "$":
            return int(text[1:], 16)
        return int(text, 0) if text.lower().startswith("0x") else int(text)

    def _read_byte_list(self) -> bytes:
        """Read '[n, n, ...]' with values 0-255."""
        if self._peek() != "[":
            raise self._error("Expected '['")
        self._advance(1)
        data = bytearray()
        self._skip(_INLINE_SPACE)
        while self._peek() != "]":
            line, column = self._line, self._column
            value = self._read_integer("a number")
            if value > 0xFF:
                raise self._error(f"Value {value} out of range (0-255)", line, column)
            data.append(value)
            self._skip(_INLINE_SPACE)
            if self._peek() == "\n":
                raise self._error("Expected ']'")
            if self._peek() == ",":
                self._advance(1)
                self._skip(_INLINE_SPACE)
        self._advance(1)
        return bytes(data)

    def _read_system_variable(self) -> None:
        """Read 'NAME=value' and store it in the system variables."""
        line, column = self._line, self._column
        match = _SYSVAR_NAME.match(self._source, self._pos)
        if not match:
            raise self._error("Expected system variable assignment 'NAME=value'")
        name = match.group(1)
        self._advance(match.end() - self._pos)
        if self._peek() == "[":
            value: Union[int, bytes] = self._read_byte_list()
        else:
            value = self._read_integer("a value")
        try:
            self.system_variables.set(name, value)
        except SystemVariableError as e:
            raise self._error(str(e), line, column) from e
        logger.debug(f"system-vars: {name.upper()} = {value!r}")

    # =========================================================================
    # Program Lines
    # =========================================================================

    def _read_line_number(self) -> int:
        line, column = self._line, self._column
        text = self._skip(_LINE_NUMBER)
        if not text:
            raise self._error("Line number expected")
        number = int(text)
        if number > MAX_LINE_NUMBER:
            raise self._error(
                f"Line number {number} too big (max {MAX_LINE_NUMBER})", line, column
            )
        return number

    def _parse_line(self) -> None:
        line_offset = len(self._program)
        line, column = self._line, self._column
        number = self._read_line_number()
        if number <= self._last_line_number:
            raise self._error(
                f"Line number {number} must be higher than the previous "
                f"line number {self._last_line_number}",
                line, column,
            )
        self._last_line_number = number

        if self._basic_start is not None and number >= self._basic_start:
            self._next_line_offset = line_offset
            self._basic_start = None

        self._program += number.to_bytes(2, "big")
        length_offset = len(self._program)
        self._program += bytes(2)

        if not self._skip(_SPACING):
            raise self._error("Space expected")

        line, column = self._line, self._column
        token = self._read_token(LexContext.NORMAL)
        if token is None:
            raise self._error("Unknown command: command expected")
        if not is_command(token):
            raise self._error(
                f"Unknown command: command expected but got '{text_of(token).strip()}'",
                line, column,
            )
        self._program.append(token)

        if token in (LET, DIM):
            self._check_variable_name()

        if token == REM:
            self._read_rem()
        else:
            self._read_statement()

        self._program.append(NEWLINE)
        length = len(self._program) - length_offset - 2
        if length > 0xFFFF:
            raise self._error(f"Line {number} too long ({length} bytes)", line, column)
        self._program[length_offset:length_offset + 2] = length.to_bytes(2, "little")

    def _check_variable_name(self) -> None:
        """Warn when the identifier after LET/DIM is spelled like a keyword."""
        match = _IDENTIFIER.match(self._source, self._pos)
        if not match:
            return
        name = match.group(1).upper()
        if f"[{name}]" in NORMAL_GRAMMAR.symbols:
            column = self._column + match.start(1) - self._pos
            self._warn(f"Variable name '{name}' is also a keyword", self._line, column)

    # =========================================================================
    # Tokens
    # =========================================================================

    def _read_token(self, context: LexContext) -> Optional[int]:
        """Read the longest token at the cursor; None at line end or no match."""
        if self._peek() == "\n":
            return None
        grammar = grammar_for(context)
        match = grammar.pattern.match(self._source, self._pos)
        if not match:
            return None
        text = match.group(0)
        token = grammar.lookup(text)
        if text.endswith("\n"):
            # The newline delimits the token but still ends the line
            text = text[:-1]
        self._advance(len(text))
        return token

    def _read_rem_token(self, context: LexContext = LexContext.REM) -> bytes:
        """Read one token or special code inside a REM line, string or screen row."""
        data = self._read_special_code()
        if data is not None:
            return data
        token = self._read_token(context)
        if token is None:
            raise self._error("Unknown token")
        return bytes([token])

    def _read_rem(self) -> None:
        while True:
            self._skip(_CONTINUATION)
            if self._peek() == "\n":
                break
            self._program += self._read_rem_token()

    def _read_statement(self) -> None:
        """Read statement text up to the end of the line."""
        identifier = False
        while True:
            self._skip(_CONTINUATION)
            if self._peek() == "\n":
                break

            data = self._read_quoted_string()
            if data is None and not identifier:
                data = self._read_number()
            if data is None:
                data = self._read_special_code()
            if data is not None:
                self._program += data
                identifier = False
                continue

            token = self._read_token(LexContext.NORMAL)
            if token is None:
                raise self._error("Parse error")
            self._program.append(token)
            identifier = is_letter(token) or (identifier and is_digit(token))

    def _read_quoted_string(self) -> Optional[bytes]:
        if self._peek() != '"':
            return None
        data = bytearray([QUOTE])
        self._advance(1)
        while True:
            self._skip(_CONTINUATION)
            char = self._peek()
            if char == "\n":
                raise self._error("Unexpected end of line in string")
            data += self._read_rem_token(LexContext.QUOTED)
            if char == '"':
                return bytes(data)

    def _read_number(self) -> Optional[bytes]:
        """Read a numeric literal: its characters, NUMBER and the float."""
        match = _NUMBER.match(self._source, self._pos)
        if not match:
            return None
        literal = match.group(0)
        try:
            value = encode_float(float(literal))
        except FloatRangeError as e:
            raise self._error(f"Number '{literal}' out of range") from e
        data = bytearray(char_token(char) for char in literal)
        data.append(NUMBER)
        data += value
        self._advance(len(literal))
        return bytes(data)

    def _read_special_code(self) -> Optional[bytes]:
        """Read a bracketed special code; None if there is none here."""
        match = _SPECIAL_CODE.match(self._source, self._pos)
        if not match:
            return None
        code = match.group(1)

        if code.startswith("#"):
            data = b""
        elif match.group(2) is not None:
            size = int(match.group(2))
            if size > MAX_BLOCK_SIZE:
                raise self._error(f"Block size {size} too big (max {MAX_BLOCK_SIZE})")
            data = bytes(size)
        elif match.group(3) is not None:
            data = self._include(match.group(3).strip())
        else:
            value = int(code)
            if value > 0xFF:
                raise self._error(f"Byte value {value} out of range (0-255)")
            data = bytes([value])

        self._advance(match.end() - self._pos)
        return data

    def _include(self, path: str) -> bytes:
        try:
            data = self._read_file(path)
        except Exception as e:
            location = self._location()
            raise IncludeError(path, e, location, self._source_line(location.line)) from e
        logger.debug(f"Included '{path}' ({len(data)} bytes)")
        return bytes(data)


# =============================================================================
# Convenience Functions
# =============================================================================

def encode_program(
    text: str,
    read_file: Optional[FileReader] = None,
    on_warning: Optional[WarningHandler] = None,
) -> bytes:
    """
    Convert BASIC text to the bare program image (no system variables).

    Example:
        >>> encode_program("10 PRINT\\n")
        b'\\x00\\n\\x02\\x00\\xf5v'
    """
    return BasicEncoder(text, read_file=read_file, on_warning=on_warning).encode_program()


def encode_pfile(
    text: str,
    read_file: Optional[FileReader] = None,
    on_warning: Optional[WarningHandler] = None,
) -> bytes:
    """Convert BASIC text to a complete P-file."""
    return BasicEncoder(text, read_file=read_file, on_warning=on_warning).create_pfile()
