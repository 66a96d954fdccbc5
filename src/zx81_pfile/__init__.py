"""
ZX81 P-file Codec - BASIC Listings To and From Tape Images
==========================================================

This package converts Sinclair ZX81 BASIC programs between a readable
text form and the binary P-file format the ZX81 writes to tape.

A P-file is a straight dump of ZX81 memory from address 16393 up to the
edit line: the system variables, the tokenized BASIC program, the display
file (screen) and the variables area. The text form carries the program
listing plus '#!' header lines for everything that is not BASIC.

Main Components
---------------
- **tokens**: The 256-entry ZX81 character/token table and its grammars
- **zxfloat**: 5-byte ZX81 floating-point numbers
- **sysvars**: System variable table and the 116-byte record
- **encoder**: BASIC text to program image / P-file (BasicEncoder)
- **decoder**: P-file to BASIC text (PfileDecoder)
- **p81**: .p81 cassette images (filename prefix)
- **screen**: Display file rendering with the ROM character set

Quick Start
-----------
Encode a listing:
    >>> from zx81_pfile import encode_pfile
    >>> pfile = encode_pfile('10 PRINT "HELLO"\\n')

Decode it again:
    >>> from zx81_pfile import decode_pfile
    >>> print(decode_pfile(pfile))
    10 PRINT "HELLO"

Work with files:
    >>> from zx81_pfile import BasicEncoder, PfileDecoder
    >>> data = BasicEncoder.from_file("game.bas").create_pfile()
    >>> text = PfileDecoder.from_file("game.p").to_text()

Or use the command-line tool:
    $ zxbas encode game.bas
    $ zxbas decode game.p

Reference Documentation
-----------------------
- ZX81 BASIC Programming manual, chapters 27 and 28 (memory layout)
- Character set: ZX81 manual, appendix A

Version History
---------------
1.0.0 - Initial release with encoder, decoder, .p81 support and screen rendering
"""

__version__ = "1.0.0"
__author__ = "ZX81 P-file Codec Contributors"

# =============================================================================
# Public API Exports
# =============================================================================

from zx81_pfile.errors import (
    Zx81Error,
    SourceLocation,
    Diagnostic,
    BasicSyntaxError,
    IncludeError,
    FloatRangeError,
    SystemVariableError,
    PfileFormatError,
    P81FormatError,
)

from zx81_pfile.tokens import (
    TOKENS,
    LexContext,
    Grammar,
    grammar_for,
    text_of,
    bracketed_text,
)

from zx81_pfile.zxfloat import encode_float, decode_float

from zx81_pfile.sysvars import (
    SystemVariable,
    SystemVariables,
    SYSTEM_VARIABLES,
    SYSVARS_ADDRESS,
    SYSVARS_SIZE,
    PROGRAM_ADDRESS,
    get_variable,
)

from zx81_pfile.encoder import (
    BasicEncoder,
    encode_program,
    encode_pfile,
    file_reader,
)

from zx81_pfile.decoder import (
    PfileDecoder,
    decode_program,
    decode_header,
    decode_pfile,
    decode_p81,
    render_tokens,
)

from zx81_pfile.p81 import build_p81, split_p81, read_p81_filename

from zx81_pfile.screen import render_screen, render_pfile_screen, screen_pixels

from zx81_pfile.config import CodecConfig

__all__ = [
    # Version info
    "__version__",
    "__author__",
    # Exception hierarchy
    "Zx81Error",
    "SourceLocation",
    "Diagnostic",
    "BasicSyntaxError",
    "IncludeError",
    "FloatRangeError",
    "SystemVariableError",
    "PfileFormatError",
    "P81FormatError",
    # Tokens
    "TOKENS",
    "LexContext",
    "Grammar",
    "grammar_for",
    "text_of",
    "bracketed_text",
    # Floats
    "encode_float",
    "decode_float",
    # System variables
    "SystemVariable",
    "SystemVariables",
    "SYSTEM_VARIABLES",
    "SYSVARS_ADDRESS",
    "SYSVARS_SIZE",
    "PROGRAM_ADDRESS",
    "get_variable",
    # Encoder
    "BasicEncoder",
    "encode_program",
    "encode_pfile",
    "file_reader",
    # Decoder
    "PfileDecoder",
    "decode_program",
    "decode_header",
    "decode_pfile",
    "decode_p81",
    "render_tokens",
    # Cassette images
    "build_p81",
    "split_p81",
    "read_p81_filename",
    # Screen
    "render_screen",
    "render_pfile_screen",
    "screen_pixels",
    # Configuration
    "CodecConfig",
]
