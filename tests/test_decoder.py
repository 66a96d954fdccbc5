"""
Decoder Unit Tests
==================

Tests for converting program images and P-files back to BASIC text.

Test Categories
---------------
1. Tokens: Rendering single lines
2. Numbers: Hidden numbers and literals
3. Separation: Tokens that would merge when read back
4. Program: Line records and damaged input
5. P-file: Header reconstruction and memory areas
"""

import pytest

from zx81_pfile.decoder import (
    PfileDecoder,
    decode_header,
    decode_p81,
    decode_pfile,
    decode_program,
    render_tokens,
)
from zx81_pfile.encoder import encode_pfile
from zx81_pfile.errors import PfileFormatError
from zx81_pfile.p81 import build_p81
from zx81_pfile.sysvars import PROGRAM_ADDRESS, SYSVARS_ADDRESS, SYSVARS_SIZE, SystemVariables
from zx81_pfile.zxfloat import encode_float


def line_record(number: int, body: list[int]) -> bytes:
    length = len(body) + 1
    return number.to_bytes(2, "big") + length.to_bytes(2, "little") + bytes(body) + b"\x76"


def render(*tokens: int, bracketized: bool = False) -> str:
    return render_tokens(bytes(tokens), bracketized)


def with_system_variable(pfile: bytes, name: str, value: int) -> bytes:
    record = SystemVariables.from_bytes(pfile)
    record.set(name, value)
    return bytes(record) + pfile[SYSVARS_SIZE:]


@pytest.fixture
def sample_pfile() -> bytes:
    """A P-file using every kind of header directive."""
    return encode_pfile(
        "#!basic-start=20\n"
        "#!dfile:HELLO\n"
        "#!basic-vars:[1,2,255]\n"
        "#!system-vars:FRAMES=12345\n"
        "10 REM [GOTO]\n"
        '20 PRINT "HELLO"\n'
    )


# =============================================================================
# Token Rendering Tests
# =============================================================================

class TestRenderTokens:
    """Tests for render_tokens."""

    def test_keyword_and_letter(self):
        assert render(0xF5, 0x26) == "PRINT A"

    def test_rem_brackets_keywords(self):
        assert render(0xEA, 0xEC) == "REM [GOTO]"

    def test_rem_keeps_digits(self):
        assert render(0xEA, 0x1D, 0x1E) == "REM 12"

    def test_rem_trailing_space(self):
        assert render(0xEA, 0x26, 0x00) == "REM A[0]"

    def test_rem_alone(self):
        assert render(0xEA) == "REM "

    def test_string_brackets_keywords(self):
        assert render(0xF5, 0x0B, 0xEC, 0x0B) == 'PRINT "[GOTO]"'

    def test_unmatched_quote(self):
        assert render(0xF5, 0x0B, 0x26) == "PRINT [11]A"

    def test_bracketized(self):
        assert render(0xFA, 0x26, 0xDE, 0xE3, bracketized=True) == "IF A[THEN][STOP]"

    def test_bracketized_keeps_command_plain(self):
        assert render(0xF5, bracketized=True) == "PRINT "

    def test_undefined_byte(self):
        assert render(0xF5, 0x43) == "PRINT [67]"

    def test_inverse(self):
        assert render(0xF5, 0xA6) == "PRINT %A"


# =============================================================================
# Number Tests
# =============================================================================

class TestNumbers:
    """Tests for hidden numbers."""

    def test_matching_number_is_hidden(self):
        assert render(0xF5, 0x1D, 0x7E, *encode_float(1)) == "PRINT 1"

    def test_exponent_literal(self):
        tokens = [0xF5, 0x1D, 0x2A, 0x1F, 0x7E, *encode_float(1000)]
        assert render(*tokens) == "PRINT 1E3"

    def test_minus_is_not_part_of_literal(self):
        assert render(0xF5, 0x16, 0x1D, 0x7E, *encode_float(1)) == "PRINT -1"

    def test_mismatched_number_is_explicit(self):
        assert render(0xF5, 0x1D, 0x7E, *encode_float(2)) == (
            "PRINT [29][126][130][0][0][0][0][#2]"
        )

    def test_number_without_literal(self):
        assert render(0xF5, 0x7E, *encode_float(0.5)) == (
            "PRINT [126][128][0][0][0][0][#0.5]"
        )

    def test_digits_without_number(self):
        assert render(0xF5, 0x1D) == "PRINT [29]"

    def test_identifier_digits(self):
        assert render(0xF5, 0x26, 0x1D) == "PRINT A1"

    def test_literal_extended_by_next_digit(self):
        """'1' followed by a plain '2' would be read back as 12."""
        tokens = [0xF5, 0x1D, 0x7E, *encode_float(1), 0x1E]
        assert render(*tokens) == "PRINT [29][126][129][0][0][0][0][#1][30]"

    def test_literal_extended_by_signed_exponent(self):
        """'1' followed by a plain 'E+5' would be read back as 1E+5."""
        tokens = [0xF5, 0x1D, 0x7E, *encode_float(1), 0x2A, 0x15, 0x21, 0x7E, *encode_float(5)]
        assert render(*tokens) == "PRINT [29][126][129][0][0][0][0][#1]E+5"

    def test_cut_short_number(self):
        with pytest.raises(PfileFormatError):
            render(0xF5, 0x7E, 0x81, 0x00)


# =============================================================================
# Separation Tests
# =============================================================================

class TestSeparation:
    """Tests for tokens that would merge with their neighbours."""

    def test_less_than_before_equals(self):
        assert render(0xF5, 0x26, 0x13, 0x14, 0x27) == "PRINT A[19]=B"

    def test_greater_than_before_equals(self):
        assert render(0xF5, 0x12, 0x14) == "PRINT [18]="

    def test_star_before_star(self):
        assert render(0xF5, 0x17, 0x17) == "PRINT [23]*"

    def test_rnd_before_letter(self):
        assert render(0xF5, 0x40, 0x26) == "PRINT [RND]A"

    def test_rnd_before_operator(self):
        assert render(0xF5, 0x40, 0x15, 0x26) == "PRINT RND+A"

    def test_pi_before_digit(self):
        assert render(0xF5, 0x42, 0x1D, 0x7E, *encode_float(1)).startswith("PRINT [PI]")

    def test_letters_spelling_keyword(self):
        # G O T O followed by a space would read back as GOTO
        assert render(0xF5, 0x2C, 0x34, 0x39, 0x34, 0x00) == "PRINT [44]OTO "

    def test_letters_spelling_function(self):
        assert render(0xF5, 0x35, 0x2E, 0x15) == "PRINT [53]I+"

    def test_space_before_or(self):
        assert render(0xF5, 0x26, 0x00, 0x34, 0x37, 0x00) == "PRINT A[0]OR "


# =============================================================================
# Program Tests
# =============================================================================

class TestDecodeProgram:
    """Tests for decode_program."""

    def test_rem_line(self):
        assert decode_program(bytes([0, 1, 2, 0, 0xEA, 0x76])) == "1 REM \n"

    def test_several_lines(self):
        data = line_record(10, [0xFB]) + line_record(20, [0xF5, 0x26])
        assert decode_program(data) == "10 CLS \n20 PRINT A\n"

    def test_bracketized(self):
        data = line_record(10, [0xFA, 0x26, 0xDE, 0xE3])
        assert decode_program(data, bracketized=True) == "10 IF A[THEN][STOP]\n"

    def test_length_exceeds_data(self):
        data = bytes([0, 10, 50, 0, 0xF5, 0x76])
        assert decode_program(data) == (
            "\n# Error: Line 10: length 50 exceeds the remaining 2 bytes.\n"
        )

    def test_missing_end_token(self):
        data = bytes([0, 10, 2, 0, 0xF5, 0x00])
        assert decode_program(data) == (
            "10 PRINT \n"
            "# Note: Line 10 did not end with 118 (END token) but with 0.\n"
        )

    def test_trailing_bytes(self):
        data = line_record(10, [0xF5]) + b"\x00\x01"
        assert decode_program(data) == (
            "10 PRINT \n\n# Warning: A few bytes could not be converted.\n"
        )

    def test_zero_length_line(self):
        data = bytes([0, 10, 0, 0]) + line_record(20, [0xF5])
        text = decode_program(data)
        assert text.startswith("\n# Error: Line 10:")
        assert text.endswith("20 PRINT \n")

    def test_damaged_number_continues(self):
        data = line_record(10, [0xF5, 0x7E, 0x81]) + line_record(20, [0xFB])
        text = decode_program(data)
        assert "# Error: Line 10:" in text
        assert text.endswith("20 CLS \n")

    def test_empty(self):
        assert decode_program(b"") == ""


# =============================================================================
# P-file Tests
# =============================================================================

class TestPfileDecoder:
    """Tests for PfileDecoder."""

    def test_too_short(self):
        with pytest.raises(PfileFormatError):
            PfileDecoder(bytes(100))

    def test_decode_pfile_never_raises(self):
        assert decode_pfile(bytes(100)).startswith("# Error:")
        assert decode_header(bytes(10)).startswith("# Error:")

    def test_regions(self):
        decoder = PfileDecoder(encode_pfile("10 PRINT\n"))
        assert decoder.program == bytes([0, 10, 2, 0, 0xF5, 0x76])
        assert len(decoder.dfile) == 793
        assert decoder.variables == b"\x80"
        assert decoder.dfile_address == PROGRAM_ADDRESS + 6
        assert not decoder.dfile_collapsed
        assert len(decoder.screen_rows()) == 24

    def test_plain_program_has_no_header(self):
        assert decode_pfile(encode_pfile("10 PRINT\n")) == "10 PRINT \n"

    def test_full_header(self, sample_pfile):
        assert PfileDecoder(sample_pfile).header() == (
            "#!basic-start=20\n\n"
            "#!dfile:HELLO\n\n"
            "#!basic-vars:[1,2,255]\n\n"
            "#!system-vars:FRAMES=12345\n\n"
        )

    def test_full_text(self, sample_pfile):
        text = decode_pfile(sample_pfile)
        assert text.endswith('10 REM [GOTO]\n20 PRINT "HELLO"\n')

    def test_vars_per_line(self, sample_pfile):
        header = decode_header(sample_pfile, vars_per_line=2)
        assert "#!basic-vars:[1,2]\n#!basic-vars:[255]\n" in header

    def test_collapsed_dfile(self):
        pfile = encode_pfile("#!dfile-collapsed\n#!dfile:HI \n")
        decoder = PfileDecoder(pfile)
        assert decoder.dfile_collapsed
        assert decoder.header() == "#!dfile-collapsed\n#!dfile:HI[0]\n\n"

    def test_collapsed_empty_dfile(self):
        pfile = encode_pfile("#!dfile-collapsed\n")
        assert PfileDecoder(pfile).header() == "#!dfile-collapsed\n\n"

    def test_dfile_wrong_row_count(self):
        pfile = bytearray(encode_pfile("#!dfile:AB\n"))
        assert pfile[SYSVARS_SIZE:SYSVARS_SIZE + 3] == bytes([0x76, 0x26, 0x27])
        pfile[SYSVARS_SIZE + 2] = 0x76
        header = PfileDecoder(bytes(pfile)).header()
        assert header.startswith("# Note: Display file has 25 rows instead of 24.\n#!dfile:A\n")

    def test_dfile_row_count_no_note(self, sample_pfile):
        assert "# Note" not in PfileDecoder(sample_pfile).header()

    def test_dfile_keywords_bracketed(self):
        pfile = encode_pfile("#!dfile:[GOTO]%A\n")
        assert "#!dfile:[GOTO]%A\n" in PfileDecoder(pfile).header()

    def test_system_variable_list(self):
        pfile = encode_pfile("#!system-vars:MEMBOT=[" + ",".join(["1"] * 30) + "]\n")
        header = PfileDecoder(pfile).header()
        assert "#!system-vars:MEMBOT=[" + ",".join(["1"] * 30) + "]\n" in header

    def test_missing_variables_end(self):
        pfile = encode_pfile("10 PRINT\n")[:-1]
        header = PfileDecoder(pfile).header()
        assert "# Note: Variables area does not end with 128.\n" in header

    def test_nxtlin_not_at_line_start(self):
        pfile = with_system_variable(encode_pfile("10 PRINT\n"), "NXTLIN", PROGRAM_ADDRESS + 1)
        header = PfileDecoder(pfile).header()
        assert "# Note: NXTLIN (0x407E) does not point to a line start.\n" in header

    def test_program_outside_basic_area(self):
        pfile = encode_pfile("10 PRINT\n")
        address = SYSVARS_ADDRESS + len(pfile)
        data = with_system_variable(pfile, "NXTLIN", address) + line_record(50, [0xFB])
        decoder = PfileDecoder(data)
        assert decoder.outside_program() == line_record(50, [0xFB])
        text = decoder.to_text()
        assert "points past the display file" in text
        assert f"# BASIC program outside BASIC area at 0x{address:04X}:\n# 50 CLS \n" in text

    def test_from_file_p81(self, tmp_path, sample_pfile):
        path = tmp_path / "hello.p81"
        path.write_bytes(build_p81("HELLO", sample_pfile))
        decoder = PfileDecoder.from_file(path)
        assert decoder.data == sample_pfile

    def test_from_file_p(self, tmp_path, sample_pfile):
        path = tmp_path / "hello.p"
        path.write_bytes(sample_pfile)
        assert PfileDecoder.from_file(path).to_text() == decode_pfile(sample_pfile)

    def test_decode_p81(self, sample_pfile):
        assert decode_p81(build_p81("HELLO", sample_pfile)) == decode_pfile(sample_pfile)
