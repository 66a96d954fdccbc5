"""
ZX81 Floating-Point Codec
=========================

Every numeric literal in a ZX81 program is followed by a hidden copy of
its value in the ROM's 5-byte floating-point format:

    byte 0      exponent + 129 (0 means the value is zero)
    bytes 1-4   mantissa, most significant byte first

The mantissa holds the fraction bits of a normalized value 1.xxx with
the leading one implied, so value = (1 + mantissa / 2**31) * 2**exponent.
The top bit of byte 1 is the sign bit; program literals are never
negative (the minus sign is a separate token), so it is always zero here.

The conversion is lossy. decode_float(encode_float(v)) stays within a
relative error of 1e-10 of v, with one exception: values that round to
exactly 2**-129 encode with an exponent byte of 0 and an empty mantissa,
the same five zero bytes as 0, and decode as 0.0.
"""

import math

from zx81_pfile.errors import FloatRangeError


FLOAT_SIZE = 5
EXPONENT_BIAS = 129
MIN_EXPONENT = -129
MAX_EXPONENT = 126

_MANTISSA_SCALE = 1 << 31


def encode_float(value: float) -> bytes:
    """
    Encode a non-negative number as a 5-byte ZX81 float.

    Args:
        value: Number to encode (>= 0)

    Returns:
        The 5 encoded bytes

    Raises:
        FloatRangeError: If value is negative, not finite, or its binary
            exponent is outside [-129, 126]
    """
    if not math.isfinite(value) or value < 0:
        raise FloatRangeError(f"Number {value} cannot be stored as ZX81 float")
    if value == 0:
        return bytes(FLOAT_SIZE)

    # frexp gives value = m * 2**e with 0.5 <= m < 1, so floor(log2) is e - 1
    _, e = math.frexp(value)
    exponent = e - 1
    mantissa = math.floor((value / math.ldexp(1.0, exponent) - 1) * _MANTISSA_SCALE + 0.5)
    if mantissa >= _MANTISSA_SCALE:
        mantissa = 0
        exponent += 1

    if exponent < MIN_EXPONENT or exponent > MAX_EXPONENT:
        raise FloatRangeError(
            f"Number {value} out of ZX81 float range "
            f"(exponent {exponent} not in {MIN_EXPONENT}..{MAX_EXPONENT})"
        )

    return bytes([
        exponent + EXPONENT_BIAS,
        (mantissa >> 24) & 0x7F,
        (mantissa >> 16) & 0xFF,
        (mantissa >> 8) & 0xFF,
        mantissa & 0xFF,
    ])


def decode_float(data: bytes) -> float:
    """
    Decode a 5-byte ZX81 float.

    Raises:
        FloatRangeError: If data is not exactly 5 bytes
    """
    if len(data) != FLOAT_SIZE:
        raise FloatRangeError(
            f"ZX81 float needs {FLOAT_SIZE} bytes, got {len(data)}"
        )
    if not any(data):
        return 0.0
    exponent = data[0] - EXPONENT_BIAS
    mantissa = int.from_bytes(data[1:5], "big")
    return math.ldexp(mantissa / _MANTISSA_SCALE + 1, exponent)
