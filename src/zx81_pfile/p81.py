"""
P81 Cassette Images
===================

A .p81 file is a P-file preceded by the program name as it is recorded
on tape. The name is stored in the ZX81 character set; its last
character has bit 7 set:

    "HELLO"  ->  2D 2A 31 31 B4  followed by the P-file

Only the framing is handled here. The P-file itself is processed by the
encoder and decoder modules.
"""

from zx81_pfile.errors import P81FormatError
from zx81_pfile.tokens import char_token, text_of


MAX_FILENAME_LENGTH = 128


def read_p81_filename(data: bytes) -> tuple[int, str]:
    """
    Read the filename prefix of a .p81 image.

    At most 128 bytes are examined. If no byte with bit 7 set is found,
    all examined bytes count as the name.

    Args:
        data: The .p81 file contents

    Returns:
        (length of the prefix in bytes, name as text)
    """
    chars = []
    length = 0
    for byte in data[:MAX_FILENAME_LENGTH]:
        chars.append(text_of(byte & 0x7F))
        length += 1
        if byte & 0x80:
            break
    return length, "".join(chars)


def encode_p81_filename(name: str) -> bytes:
    """
    Encode a program name for a .p81 image.

    Raises:
        P81FormatError: If the name is empty, too long, or has a character
            outside the ZX81 character set
    """
    if not name:
        raise P81FormatError("Program name must not be empty")
    if len(name) > MAX_FILENAME_LENGTH:
        raise P81FormatError(
            f"Program name too long ({len(name)} > {MAX_FILENAME_LENGTH} characters)"
        )
    encoded = bytearray()
    for char in name:
        try:
            code = char_token(char)
        except KeyError:
            raise P81FormatError(f"Character '{char}' not allowed in program name") from None
        if code >= 0x40:
            raise P81FormatError(f"Character '{char}' not allowed in program name")
        encoded.append(code)
    encoded[-1] |= 0x80
    return bytes(encoded)


def build_p81(name: str, pfile: bytes) -> bytes:
    """Prefix a P-file with its program name."""
    return encode_p81_filename(name) + pfile


def split_p81(data: bytes) -> tuple[str, bytes]:
    """Split a .p81 image into program name and P-file."""
    length, name = read_p81_filename(data)
    return name, data[length:]
