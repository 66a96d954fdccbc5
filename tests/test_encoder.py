"""
Encoder Unit Tests
==================

Tests for converting BASIC text to program images and P-files.

Test Categories
---------------
1. Lines: Line records, keywords and spacing
2. Numbers: Numeric literals and hidden numbers
3. REM and Strings: Literal text and bracketed keywords
4. Special Codes: [N], [#...], [!block=N], [!include ...]
5. Warnings: Keyword-like variable names
6. Errors: Fatal syntax errors and their locations
7. Header: '#!' directives
8. P-file: Assembly of the complete image
"""

import pytest
from pathlib import Path

from zx81_pfile.encoder import (
    BasicEncoder,
    encode_pfile,
    encode_program,
    file_reader,
)
from zx81_pfile.errors import BasicSyntaxError, IncludeError
from zx81_pfile.sysvars import PROGRAM_ADDRESS, SYSVARS_SIZE, SystemVariables
from zx81_pfile.zxfloat import encode_float


def line_record(number: int, body: list[int]) -> bytes:
    """Build a line record: number (BE), length (LE), body, NEWLINE."""
    length = len(body) + 1
    return (
        number.to_bytes(2, "big")
        + length.to_bytes(2, "little")
        + bytes(body)
        + b"\x76"
    )


def body_of(text: str) -> list[int]:
    """Encode a single-line program and return its tokens."""
    program = encode_program(text)
    return list(program[4:-1])


def number_bytes(digits: list[int], value: float) -> list[int]:
    return digits + [0x7E] + list(encode_float(value))


def syntax_error(text: str) -> BasicSyntaxError:
    with pytest.raises(BasicSyntaxError) as exc_info:
        encode_pfile(text)
    return exc_info.value


# =============================================================================
# Line Tests
# =============================================================================

class TestLines:
    """Tests for line records and keyword tokens."""

    def test_single_keyword(self):
        assert encode_program("10 PRINT\n") == bytes([0, 10, 2, 0, 0xF5, 0x76])

    def test_missing_final_newline(self):
        assert encode_program("10 PRINT") == bytes([0, 10, 2, 0, 0xF5, 0x76])

    def test_carriage_returns_dropped(self):
        assert encode_program("10 PRINT\r\n") == bytes([0, 10, 2, 0, 0xF5, 0x76])

    def test_line_number_big_endian(self):
        assert encode_program("1000 CLS\n")[:2] == bytes([0x03, 0xE8])

    def test_multiple_lines(self):
        program = encode_program("10 CLS\n20 PRINT\n")
        assert program == line_record(10, [0xFB]) + line_record(20, [0xF5])

    def test_keyword_consumes_one_space(self):
        assert body_of("10 PLOT LIST\n") == [0xF6, 0xF0]

    def test_extra_space_is_a_token(self):
        assert body_of("10 PLOT  LIST\n") == [0xF6, 0x00, 0xF0]

    def test_lower_case(self):
        assert body_of("10 print a\n") == [0xF5, 0x26]

    def test_identifier_is_not_split_into_functions(self):
        assert body_of("10 PRINT RNDVAR\n") == [0xF5, 0x37, 0x33, 0x29, 0x3B, 0x26, 0x37]
        assert body_of("10 PRINT PIT\n") == [0xF5, 0x35, 0x2E, 0x39]

    def test_function_tokens(self):
        assert body_of("10 PRINT RND\n") == [0xF5, 0x40]
        assert body_of("10 PRINT PI*2\n")[:3] == [0xF5, 0x42, 0x17]

    def test_operators(self):
        assert body_of("10 IF A<=B THEN STOP\n") == [
            0xFA, 0x26, 0xDB, 0x27, 0xDE, 0xE3,
        ]

    def test_rem_as_plain_statement_token(self):
        """Only the first keyword of a line switches to REM mode."""
        assert body_of("10 PRINT REM A\n") == [0xF5, 0xEA, 0x26]

    def test_blank_lines_and_comments(self):
        text = "# a comment\n\n   \n10 PRINT\n# trailing\n"
        assert encode_program(text) == encode_program("10 PRINT\n")

    def test_continuation_between_tokens(self):
        assert body_of("10 PRINT A\\\nB\n") == [0xF5, 0x26, 0x27]

    def test_continuation_after_line_number(self):
        assert encode_program("10 \\\n  PRINT\n") == encode_program("10 PRINT\n")


# =============================================================================
# Number Tests
# =============================================================================

class TestNumbers:
    """Tests for numeric literals."""

    @pytest.mark.parametrize("literal, expected", [
        ("1", [29, 126, 129, 0, 0, 0, 0]),
        ("9", [37, 126, 132, 16, 0, 0, 0]),
        ("0.5", [28, 27, 33, 126, 128, 0, 0, 0, 0]),
        (".6E-1", [27, 34, 42, 22, 29, 126, 124, 117, 194, 143, 92]),
        ("50.7", [33, 28, 27, 35, 126, 134, 74, 204, 204, 205]),
    ])
    def test_literal(self, literal, expected):
        assert body_of(f"10 PRINT {literal}\n")[1:] == expected

    def test_exponent_without_digits_is_a_letter(self):
        assert body_of("10 PRINT 1E\n") == [0xF5] + number_bytes([0x1D], 1) + [0x2A]

    def test_exponent(self):
        assert body_of("10 PRINT 1E3\n") == [0xF5] + number_bytes([0x1D, 0x2A, 0x1F], 1000)

    def test_lower_case_exponent(self):
        assert body_of("10 PRINT 1e3\n") == body_of("10 PRINT 1E3\n")

    def test_digits_in_identifier(self):
        assert body_of("10 LET A1=5\n") == (
            [0xF1, 0x26, 0x1D, 0x14] + number_bytes([0x21], 5)
        )

    def test_letter_e_starts_identifier(self):
        assert body_of("10 PRINT E5\n") == [0xF5, 0x2A, 0x21]

    def test_number_after_identifier_and_operator(self):
        assert body_of("10 PRINT A+1\n") == [0xF5, 0x26, 0x15] + number_bytes([0x1D], 1)

    def test_out_of_range(self):
        error = syntax_error("10 PRINT 1E99\n")
        assert "out of range" in error.message


# =============================================================================
# REM and String Tests
# =============================================================================

class TestRemAndStrings:
    """Tests for REM lines and quoted strings."""

    def test_rem_reads_letters(self):
        assert body_of("10 REM GOTO\n") == [0xEA, 0x2C, 0x34, 0x39, 0x34]

    def test_rem_bracketed_keyword(self):
        assert body_of("10 REM [GOTO]\n") == [0xEA, 0xEC]

    def test_rem_keeps_quotes(self):
        assert body_of('10 REM "\n') == [0xEA, 0x0B]

    def test_rem_without_text(self):
        assert body_of("10 REM\n") == [0xEA]
        assert body_of("10 REM \n") == [0xEA]

    def test_rem_digits_have_no_hidden_number(self):
        assert body_of("10 REM 12\n") == [0xEA, 0x1D, 0x1E]

    def test_string(self):
        assert body_of('10 PRINT "HI"\n') == [0xF5, 0x0B, 0x2D, 0x2E, 0x0B]

    def test_string_reads_letters(self):
        assert body_of('10 PRINT "RND"\n') == [0xF5, 0x0B, 0x37, 0x33, 0x29, 0x0B]

    def test_keyword_in_statement_and_string(self):
        assert body_of('10 PRINT RND;"RND"\n') == [
            0xF5, 0x40, 0x19, 0x0B, 0x37, 0x33, 0x29, 0x0B,
        ]

    def test_string_escaped_quote(self):
        assert body_of('10 PRINT "A\\"B"\n') == [0xF5, 0x0B, 0x26, 0xC0, 0x27, 0x0B]

    def test_string_digits_have_no_hidden_number(self):
        assert body_of('10 PRINT "1"\n') == [0xF5, 0x0B, 0x1D, 0x0B]

    def test_inverse_characters(self):
        assert body_of("10 REM %A%1\n") == [0xEA, 0xA6, 0x9D]

    def test_block_graphics(self):
        assert body_of("10 REM \\##\\' \n") == [0xEA, 0x08, 0x01]


# =============================================================================
# Special Code Tests
# =============================================================================

class TestSpecialCodes:
    """Tests for bracketed special codes."""

    def test_byte_value(self):
        assert body_of("10 REM [0][255]\n") == [0xEA, 0x00, 0xFF]

    def test_inline_comment(self):
        assert body_of("10 PRINT [#note] A\n") == [0xF5, 0x00, 0x26]

    def test_block(self):
        assert body_of("10 REM [!block=3]\n") == [0xEA, 0, 0, 0]

    def test_byte_in_statement(self):
        assert body_of("10 PRINT [29]\n") == [0xF5, 0x1D]

    def test_include(self):
        program = encode_program(
            "10 REM [!include data.bin]\n",
            read_file=lambda path: {"data.bin": b"\x01\x02"}[path],
        )
        assert list(program[4:-1]) == [0xEA, 0x01, 0x02]

    def test_include_path_with_spaces(self):
        seen = []

        def read(path):
            seen.append(path)
            return b""

        encode_program("10 REM [!include my file.bin ]\n", read_file=read)
        assert seen == ["my file.bin"]

    def test_include_failure(self):
        def read(path):
            raise FileNotFoundError(path)

        with pytest.raises(IncludeError) as exc_info:
            encode_program("10 REM [!include missing.bin]\n", read_file=read)
        error = exc_info.value
        assert isinstance(error, BasicSyntaxError)
        assert error.path == "missing.bin"
        assert isinstance(error.cause, FileNotFoundError)
        assert error.line == 0

    def test_file_reader(self, tmp_path):
        (tmp_path / "code.bin").write_bytes(b"\xAA")
        assert file_reader(tmp_path)("code.bin") == b"\xAA"

    def test_byte_out_of_range(self):
        error = syntax_error("10 REM [256]\n")
        assert "out of range" in error.message

    def test_block_too_big(self):
        error = syntax_error("10 REM [!block=40000]\n")
        assert "too big" in error.message


# =============================================================================
# Warning Tests
# =============================================================================

class TestWarnings:
    """Tests for keyword-like variable names."""

    def test_let_keyword_name(self):
        received = []
        encoder = BasicEncoder("10 LET RND=1\n", on_warning=received.append)
        encoder.encode_program()
        assert len(encoder.warnings) == 1
        warning = encoder.warnings[0]
        assert received == [warning]
        assert warning.message == "Variable name 'RND' is also a keyword"
        assert (warning.line, warning.column) == (0, 7)
        assert str(warning) == "<input>:1:8: warning: Variable name 'RND' is also a keyword"

    def test_dim_keyword_name(self):
        encoder = BasicEncoder("10 DIM GOTO(5)\n")
        encoder.encode_program()
        assert [(w.line, w.column) for w in encoder.warnings] == [(0, 7)]

    def test_plain_name(self):
        encoder = BasicEncoder("10 LET A=1\n20 DIM B(3)\n")
        encoder.encode_program()
        assert encoder.warnings == []

    def test_warning_does_not_stop_encoding(self):
        assert body_of("10 LET RND=1\n")[:3] == [0xF1, 0x40, 0x14]


# =============================================================================
# Error Tests
# =============================================================================

class TestErrors:
    """Tests for fatal errors and their locations."""

    def test_command_expected(self):
        error = syntax_error("10 PL OT\n")
        assert "command expected but got 'P'" in error.message
        assert (error.line, error.column) == (0, 3)

    def test_space_expected(self):
        error = syntax_error("10PLOT\n")
        assert error.message.startswith("Space expected")
        assert (error.line, error.column) == (0, 2)

    def test_line_number_expected(self):
        error = syntax_error("PRINT\n")
        assert error.message.startswith("Line number expected")

    def test_line_number_too_big(self):
        error = syntax_error("10000 PRINT\n")
        assert "too big" in error.message

    def test_line_numbers_must_increase(self):
        error = syntax_error("20 PRINT\n10 PRINT\n")
        assert (error.line, error.column) == (1, 0)

    def test_unterminated_string(self):
        error = syntax_error('10 PRINT "ABC\n')
        assert error.message.startswith("Unexpected end of line in string")

    def test_parse_error(self):
        error = syntax_error("10 PRINT ~\n")
        assert error.message.startswith("Parse error")
        assert (error.line, error.column) == (0, 9)

    def test_unknown_rem_token(self):
        error = syntax_error("10 REM ~\n")
        assert error.message.startswith("Unknown token")

    def test_formatted_message(self):
        error = syntax_error("10 PL OT\n")
        lines = str(error).splitlines()
        assert lines[0].startswith("<input>:1:4: error: ")
        assert lines[1] == "    10 PL OT"
        assert lines[2] == "       ^"

    def test_error_on_later_line(self):
        error = syntax_error("10 PRINT\n\n30 PRINT ~\n")
        assert error.line == 2

    def test_filename_in_location(self):
        with pytest.raises(BasicSyntaxError) as exc_info:
            BasicEncoder("10 PL OT\n", filename="game.bas").encode_program()
        assert exc_info.value.location.filename == "game.bas"


# =============================================================================
# Header Tests
# =============================================================================

class TestHeader:
    """Tests for '#!' directives."""

    def test_system_variable_decimal(self):
        pfile = encode_pfile("#!system-vars:FRAMES=12345\n10 PRINT\n")
        assert SystemVariables.from_bytes(pfile).get("FRAMES") == 12345

    def test_system_variable_hex(self):
        pfile = encode_pfile("#!system-vars:FRAMES=$1234\n#!system-vars:PR_CC=0x10\n")
        record = SystemVariables.from_bytes(pfile)
        assert record.get("FRAMES") == 0x1234
        assert record.get("PR_CC") == 0x10

    def test_system_variable_by_address(self):
        pfile = encode_pfile("#!system-vars:16417=7\n")
        assert SystemVariables.from_bytes(pfile).get("16417") == 7

    def test_system_variable_alternative_names(self):
        pfile = encode_pfile("#!system-vars:BERG=5\n#!system-vars:16423=9\n")
        record = SystemVariables.from_bytes(pfile)
        assert record.get("BREG") == 5
        assert record.get("DEBOUNCE") == 9

    def test_system_variable_list(self):
        pfile = encode_pfile("#!system-vars:COORDS=[1, 2]\n")
        assert SystemVariables.from_bytes(pfile).get_bytes("COORDS") == b"\x01\x02"

    def test_system_variable_bad_width(self):
        error = syntax_error("#!system-vars:PRBUFF=5\n")
        assert (error.line, error.column) == (0, 14)

    def test_system_variable_unknown(self):
        error = syntax_error("#!system-vars:NOPE=5\n")
        assert "NOPE" in error.message

    def test_basic_vars(self):
        pfile = encode_pfile("#!basic-vars:[1,2,255]\n10 PRINT\n")
        assert pfile[-4:] == bytes([1, 2, 255, 0x80])

    def test_basic_vars_concatenated(self):
        pfile = encode_pfile("#!basic-vars:[1]\n#!basic-vars:[2, 3]\n")
        assert pfile[-4:] == bytes([1, 2, 3, 0x80])

    def test_basic_vars_value_out_of_range(self):
        error = syntax_error("#!basic-vars:[1,256]\n")
        assert "out of range" in error.message

    def test_basic_start(self):
        pfile = encode_pfile("#!basic-start=20\n10 PRINT\n20 CLS\n")
        record = SystemVariables.from_bytes(pfile)
        assert record.get("NXTLIN") == PROGRAM_ADDRESS + 6

    def test_basic_start_next_higher_line(self):
        pfile = encode_pfile("#!basic-start=15\n10 PRINT\n20 CLS\n")
        assert SystemVariables.from_bytes(pfile).get("NXTLIN") == PROGRAM_ADDRESS + 6

    def test_basic_start_not_found(self):
        error = syntax_error("#!basic-start=100\n10 PRINT\n")
        assert "100" in error.message
        assert error.line == 0

    def test_basic_start_needs_equals(self):
        error = syntax_error("#!basic-start 10\n10 PRINT\n")
        assert "'='" in error.message

    def test_trailing_text_after_directive(self):
        error = syntax_error("#!  basic-start = 100  ERROR \n")
        assert error.message.startswith("Expected newline")
        assert (error.line, error.column) == (0, 23)

    def test_unknown_directive(self):
        error = syntax_error("#!colour:red\n")
        assert "Unknown command in header" in error.message

    def test_empty_directive_is_ignored(self):
        assert encode_program("#!\n10 PRINT\n") == encode_program("10 PRINT\n")

    def test_dfile_rows(self):
        pfile = encode_pfile("#!dfile:HI\n10 PRINT\n")
        dfile = pfile[SYSVARS_SIZE + 6:SYSVARS_SIZE + 6 + 793]
        assert dfile[:4] == bytes([0x76, 0x2D, 0x2E, 0x00])
        assert dfile[33] == 0x76

    def test_dfile_collapsed(self):
        pfile = encode_pfile("#!dfile-collapsed\n#!dfile:HI\n")
        dfile = pfile[SYSVARS_SIZE:-1]
        assert dfile == bytes([0x76, 0x2D, 0x2E]) + bytes([0x76] * 24)

    def test_dfile_row_rejects_end_token(self):
        error = syntax_error("#!dfile:A[118]B\n")
        assert error.message.startswith("Screen row cannot contain 118")
        assert (error.line, error.column) == (0, 9)

    def test_dfile_row_rejects_included_end_token(self):
        with pytest.raises(BasicSyntaxError) as exc_info:
            encode_pfile("#!dfile:[!include row.bin]\n", read_file=lambda path: b"\x26\x76")
        assert "Screen row cannot contain 118" in exc_info.value.message


# =============================================================================
# P-file Tests
# =============================================================================

class TestPfile:
    """Tests for the complete P-file."""

    def test_layout(self):
        pfile = encode_pfile("10 PRINT\n")
        assert len(pfile) == SYSVARS_SIZE + 6 + 793 + 1
        record = SystemVariables.from_bytes(pfile)
        dfile = PROGRAM_ADDRESS + 6
        assert record.get("D_FILE") == dfile
        assert record.get("DF_CC") == dfile + 1
        assert record.get("VARS") == dfile + 793
        assert record.get("E_LINE") == dfile + 794
        assert record.get("CH_ADD") == dfile + 798
        assert record.get("STKBOT") == dfile + 799
        assert record.get("STKEND") == dfile + 799
        assert record.get("NXTLIN") == dfile
        assert pfile[-1] == 0x80

    def test_program_area(self):
        pfile = encode_pfile("10 PRINT\n")
        assert pfile[SYSVARS_SIZE:SYSVARS_SIZE + 6] == bytes([0, 10, 2, 0, 0xF5, 0x76])

    def test_empty_program(self):
        pfile = encode_pfile("")
        assert len(pfile) == SYSVARS_SIZE + 793 + 1

    def test_semantic_fields_default(self):
        pfile = encode_pfile("10 PRINT\n")
        assert SystemVariables.create_default().compare(pfile[:SYSVARS_SIZE]) == {}

    def test_create_dfile_expanded(self):
        dfile = BasicEncoder.create_dfile([b"\x26"])
        assert len(dfile) == 793
        assert dfile[1] == 0x26
        assert dfile.count(0x76) == 25

    def test_create_dfile_truncates(self):
        rows = [bytes([0x26] * 40)] * 30
        dfile = BasicEncoder.create_dfile(rows, collapsed=True)
        assert len(dfile) == 1 + 24 * 33

    def test_from_file_resolves_includes(self, tmp_path):
        (tmp_path / "code.bin").write_bytes(b"\x01")
        source = tmp_path / "prog.bas"
        source.write_text("10 REM [!include code.bin]\n")
        encoder = BasicEncoder.from_file(source)
        assert encoder.encode_program()[4:-1] == bytes([0xEA, 0x01])
        assert encoder.filename == str(source)

    def test_from_file_include_dir(self, tmp_path):
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "code.bin").write_bytes(b"\x02")
        source = tmp_path / "prog.bas"
        source.write_text("10 REM [!include code.bin]\n")
        encoder = BasicEncoder.from_file(source, include_dir=data_dir)
        assert encoder.encode_program()[4:-1] == bytes([0xEA, 0x02])
