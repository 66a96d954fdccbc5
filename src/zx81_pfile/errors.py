"""
ZX81 P-file Codec Error Hierarchy
=================================

This module defines the exception hierarchy for the whole codec.
All exceptions inherit from Zx81Error, allowing callers to catch every
codec-related error with a single except clause if desired.

Exception Hierarchy
-------------------
Zx81Error (base)
├── BasicSyntaxError - fatal error while encoding BASIC source text
│   └── IncludeError - [!include] file could not be read
├── FloatRangeError - number cannot be stored as a ZX81 float
├── SystemVariableError - unknown system variable or bad value width
├── PfileFormatError - malformed P-file structure
└── P81FormatError - malformed .p81 filename prefix

Design Philosophy
-----------------
Encoder errors carry a 0-based source location (line, column), which is
how editors address text. The formatted message shows them 1-based, the
way compilers print them:

    program.bas:3:12: error: Unexpected end of line in string: '"HELLO'
        20 PRINT "HELLO
                   ^

Warnings are not exceptions. They are plain Diagnostic values collected
by the encoder and optionally pushed to a callback, so an encode can
finish and still report every suspicious identifier it found.
"""

from dataclasses import dataclass
from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class Zx81Error(Exception):
    """
    Base exception for all codec errors.

        try:
            pfile = encode_pfile(text)
        except Zx81Error as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    A position in BASIC source text.

    Attributes:
        filename: Name of the source file (or "<input>" for string input)
        line: Line number (0-indexed)
        column: Column number (0-indexed)
    """
    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        """Format as 'filename:line:column' with 1-indexed numbers."""
        return f"{self.filename}:{self.line + 1}:{self.column + 1}"


@dataclass(frozen=True)
class Diagnostic:
    """
    A non-fatal finding reported while encoding.

    Shares the shape of a fatal error ({message, line, column}) so hosts
    can present both the same way.
    """
    message: str
    location: SourceLocation
    severity: str = "warning"

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def column(self) -> int:
        return self.location.column

    def __str__(self) -> str:
        return f"{self.location}: {self.severity}: {self.message}"


# =============================================================================
# Encoder Exceptions
# =============================================================================

class BasicSyntaxError(Zx81Error):
    """
    Fatal error raised while converting BASIC text to a P-file.

    Attributes:
        message: The error description, including a short source snippet
        location: Where in the source the error occurred
        source_line: The full text of the offending source line (optional)
        hint: A suggestion for fixing the error (optional)
    """

    def __init__(
        self,
        message: str,
        location: SourceLocation,
        source_line: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.source_line = source_line
        self.hint = hint
        super().__init__(self._format_message())

    @property
    def line(self) -> int:
        """0-based line of the error."""
        return self.location.line

    @property
    def column(self) -> int:
        """0-based column of the error."""
        return self.location.column

    def _format_message(self) -> str:
        """
        Format the error message with location, source context, and hint.

        Example output:
            prog.bas:1:4: error: Unknown command: command expected but got 'P': 'PL OT'
                10 PL OT
                   ^
        """
        parts = [f"{self.location}: error: {self.message}"]

        if self.source_line is not None:
            parts.append(f"    {self.source_line}")
            parts.append(" " * (4 + self.location.column) + "^")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)


class IncludeError(BasicSyntaxError):
    """
    A [!include path] special code could not be satisfied.

    The exception raised by the file-read capability is chained as
    __cause__ and also kept in the `cause` attribute.
    """

    def __init__(
        self,
        path: str,
        cause: Exception,
        location: SourceLocation,
        source_line: Optional[str] = None,
    ):
        self.path = path
        self.cause = cause
        super().__init__(
            f"Failed to read file '{path}': {cause}",
            location=location,
            source_line=source_line,
        )


# =============================================================================
# Value Exceptions
# =============================================================================

class FloatRangeError(Zx81Error, ValueError):
    """
    Number cannot be represented in the 5-byte ZX81 float format.

    Raised for negative or non-finite values, for magnitudes whose binary
    exponent falls outside [-129, 126], and for encoded input that is not
    exactly five bytes long.
    """
    pass


class SystemVariableError(Zx81Error):
    """
    Invalid system variable access.

    Raised for unknown field names or addresses, and for values that do
    not fit the width of the field they are written to.
    """
    pass


# =============================================================================
# Binary Format Exceptions
# =============================================================================

class PfileFormatError(Zx81Error):
    """
    Malformed P-file content.

    The decoder raises this internally for a single line record and turns
    it into a comment in the decoded text; callers of the decoding
    functions never see it.
    """
    pass


class P81FormatError(Zx81Error):
    """Invalid cassette-image filename prefix."""
    pass
