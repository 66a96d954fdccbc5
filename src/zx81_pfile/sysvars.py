"""
ZX81 System Variables
=====================

A P-file is a snapshot of ZX81 RAM starting at address 16393 ($4009).
Its first 116 bytes are the system variables, which the ROM reloads
verbatim on LOAD. This module describes that block and provides a
record type to build, inspect and compare it.

Field Kinds
-----------
- **Structural** fields are pointers into the memory that follows the
  block (D_FILE, DF_CC, VARS, E_LINE, CH_ADD, STKBOT, STKEND, NXTLIN).
  Their values follow from the lengths of the program, screen and
  variables areas and are always recomputed when a P-file is assembled.
- **Semantic** fields (everything else) are machine state that can be
  set freely through ``#!system-vars:`` directives. Only these take part
  in comparisons.

Usage
-----
    >>> from zx81_pfile.sysvars import SystemVariables, get_variable
    >>> get_variable("D_FILE").address
    16396
    >>> record = SystemVariables.create_default()
    >>> record.set("FRAMES", 12345)
    >>> SystemVariables.create_default().compare(record)
    {'FRAMES': b'90'}

Reference
---------
- ZX81 BASIC Programming manual, chapter 28 "The system variables"
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from zx81_pfile.errors import SystemVariableError


# =============================================================================
# Memory Layout Constants
# =============================================================================

SYSVARS_ADDRESS = 0x4009        # 16393, first byte of a P-file
SYSVARS_SIZE = 116
PROGRAM_ADDRESS = 0x407D        # 16509, first byte of the BASIC program


# =============================================================================
# System Variable Definition
# =============================================================================

@dataclass(frozen=True)
class SystemVariable:
    """
    Definition of a ZX81 system variable.

    Attributes:
        name: Variable name as used in the ZX81 manual; unused bytes are
            named after their decimal address (e.g. "16417")
        address: Absolute address (16393-16508)
        size: Size in bytes
        description: Brief description of the variable's purpose
        structural: True for pointers derived from the memory layout
    """
    name: str
    address: int
    size: int
    description: str
    structural: bool = False

    @property
    def offset(self) -> int:
        """Offset of the field inside the 116-byte block."""
        return self.address - SYSVARS_ADDRESS


SYSTEM_VARIABLES: tuple[SystemVariable, ...] = (
    SystemVariable("VERSN", 16393, 1, "0 identifies ZX81 BASIC in saved programs"),
    SystemVariable("E_PPC", 16394, 2, "Number of current line (with program cursor)"),
    SystemVariable("D_FILE", 16396, 2, "Address of the display file", structural=True),
    SystemVariable("DF_CC", 16398, 2, "Print position in display file", structural=True),
    SystemVariable("VARS", 16400, 2, "Address of the variables area", structural=True),
    SystemVariable("DEST", 16402, 2, "Address of variable in assignment"),
    SystemVariable("E_LINE", 16404, 2, "Address of the edit line", structural=True),
    SystemVariable("CH_ADD", 16406, 2, "Address of the next character to interpret", structural=True),
    SystemVariable("X_PTR", 16408, 2, "Address of the character preceding the syntax error marker"),
    SystemVariable("STKBOT", 16410, 2, "Bottom of the calculator stack", structural=True),
    SystemVariable("STKEND", 16412, 2, "End of the calculator stack", structural=True),
    SystemVariable("BREG", 16414, 1, "Calculator's b register"),
    SystemVariable("MEM", 16415, 2, "Address of area used for calculator's memory"),
    SystemVariable("16417", 16417, 1, "Not used"),
    SystemVariable("DF_SZ", 16418, 1, "Number of lines in the lower part of the screen"),
    SystemVariable("S_TOP", 16419, 2, "Number of the top program line in automatic listings"),
    SystemVariable("LAST_K", 16421, 2, "Shows which keys pressed"),
    SystemVariable("DEBOUNCE", 16423, 1, "Debounce status of keyboard"),
    SystemVariable("MARGIN", 16424, 1, "Number of blank lines above or below picture"),
    SystemVariable("NXTLIN", 16425, 2, "Address of next program line to be executed", structural=True),
    SystemVariable("OLDPPC", 16427, 2, "Line number to which CONT jumps"),
    SystemVariable("FLAGX", 16429, 1, "Various flags"),
    SystemVariable("STRLEN", 16430, 2, "Length of string type destination in assignment"),
    SystemVariable("T_ADDR", 16432, 2, "Address of next item in syntax table"),
    SystemVariable("SEED", 16434, 2, "The seed for RND"),
    SystemVariable("FRAMES", 16436, 2, "Counts the frames displayed on the television"),
    SystemVariable("COORDS", 16438, 2, "Coordinates of last point PLOTted"),
    SystemVariable("PR_CC", 16440, 1, "Less significant byte of LPRINT position in PRBUFF"),
    SystemVariable("S_POSN", 16441, 2, "Column and line number for PRINT position"),
    SystemVariable("CDFLAG", 16443, 1, "Various flags, bit 7 is on during compute and display mode"),
    SystemVariable("PRBUFF", 16444, 33, "Printer buffer (33rd character is NEWLINE)"),
    SystemVariable("MEMBOT", 16477, 30, "Calculator's memory area"),
    SystemVariable("16507", 16507, 2, "Not used"),
)

_VARIABLES_BY_NAME: dict[str, SystemVariable] = {
    var.name: var for var in SYSTEM_VARIABLES
}

_VARIABLES_BY_ADDRESS: dict[int, SystemVariable] = {
    var.address: var for var in SYSTEM_VARIABLES
}

STRUCTURAL_NAMES: frozenset[str] = frozenset(
    var.name for var in SYSTEM_VARIABLES if var.structural
)

# Other spellings found in existing listings
_ALIASES: dict[str, str] = {
    "BERG": "BREG",
}


def get_variable(key: Union[str, int]) -> SystemVariable:
    """
    Look up a system variable by name or by address.

    Args:
        key: Name (case-insensitive, BERG accepted for BREG), absolute
            address as int, or absolute address as a decimal string
            (e.g. "16418")

    Returns:
        The SystemVariable definition

    Raises:
        SystemVariableError: If no field has that name or start address
    """
    if isinstance(key, int):
        var = _VARIABLES_BY_ADDRESS.get(key)
    elif key.strip().isdigit():
        var = _VARIABLES_BY_ADDRESS.get(int(key))
    else:
        name = key.strip().upper()
        var = _VARIABLES_BY_NAME.get(_ALIASES.get(name, name))
    if var is None:
        raise SystemVariableError(f"Unknown system variable '{key}'")
    return var


# =============================================================================
# Default Image
# =============================================================================

def _default_image() -> bytes:
    image = bytearray(SYSVARS_SIZE)

    def put(name: str, *values: int) -> None:
        var = _VARIABLES_BY_NAME[name]
        image[var.offset:var.offset + len(values)] = bytes(values)

    put("E_PPC", 0x01, 0x00)
    put("MEM", 0x3D, 0x40)
    put("DF_SZ", 0x02)
    put("S_TOP", 0x02, 0x00)
    put("LAST_K", 0xBF, 0xFD)
    put("DEBOUNCE", 0x0F)
    put("MARGIN", 0x37)
    put("T_ADDR", 0x8D, 0x0C)
    put("FRAMES", 0xA3, 0xF5)
    put("PR_CC", 0xBC)
    put("S_POSN", 0x21, 0x18)
    put("CDFLAG", 0x40)
    prbuff = _VARIABLES_BY_NAME["PRBUFF"]
    image[prbuff.offset + prbuff.size - 1] = 0x76
    return bytes(image)


# State of a freshly reset ZX81 as found in typical saved programs
DEFAULT_IMAGE: bytes = _default_image()


# =============================================================================
# System Variables Record
# =============================================================================

class SystemVariables:
    """
    The 116-byte system variables block of a P-file.

    Values of 1- and 2-byte fields are integers (little-endian in memory);
    longer fields are byte strings.
    """

    def __init__(self, image: Optional[bytes] = None):
        """
        Create a record.

        Args:
            image: 116 bytes to start from (default: DEFAULT_IMAGE)

        Raises:
            SystemVariableError: If image has the wrong length
        """
        if image is None:
            image = DEFAULT_IMAGE
        if len(image) != SYSVARS_SIZE:
            raise SystemVariableError(
                f"System variables need {SYSVARS_SIZE} bytes, got {len(image)}"
            )
        self._data = bytearray(image)

    @classmethod
    def create_default(cls) -> "SystemVariables":
        """Create a record holding the default image."""
        return cls()

    @classmethod
    def from_bytes(cls, data: bytes) -> "SystemVariables":
        """Create a record from the first 116 bytes of a P-file."""
        return cls(bytes(data[:SYSVARS_SIZE]))

    # -------------------------------------------------------------------------
    # Field Access
    # -------------------------------------------------------------------------

    def get_bytes(self, key: Union[str, int]) -> bytes:
        """Get the raw bytes of a field."""
        var = get_variable(key)
        return bytes(self._data[var.offset:var.offset + var.size])

    def get(self, key: Union[str, int]) -> Union[int, bytes]:
        """
        Get the value of a field.

        Returns:
            An int for 1- and 2-byte fields, the raw bytes otherwise
        """
        var = get_variable(key)
        raw = self.get_bytes(var.name)
        if var.size <= 2:
            return int.from_bytes(raw, "little")
        return raw

    def set(self, key: Union[str, int], value: Union[int, bytes, Sequence[int]]) -> None:
        """
        Set the value of a field.

        Args:
            key: Field name or address
            value: Integer (stored little-endian, must fit the field's
                width) or a byte sequence of exactly the field's size

        Raises:
            SystemVariableError: If the field is unknown or the value
                does not fit
        """
        var = get_variable(key)

        if isinstance(value, int):
            if var.size > 2:
                raise SystemVariableError(
                    f"{var.name} is a {var.size}-byte field; "
                    f"give a list of {var.size} bytes"
                )
            if not 0 <= value < (1 << (8 * var.size)):
                raise SystemVariableError(
                    f"Value {value} does not fit the {var.size}-byte "
                    f"system variable {var.name}"
                )
            raw = value.to_bytes(var.size, "little")
        else:
            if len(value) != var.size:
                raise SystemVariableError(
                    f"{var.name} needs {var.size} bytes, got {len(value)}"
                )
            if any(not 0 <= b <= 0xFF for b in value):
                raise SystemVariableError(
                    f"Byte values for {var.name} must be 0-255"
                )
            raw = bytes(value)

        self._data[var.offset:var.offset + var.size] = raw

    def set_layout(self, dfile: int, variables: int, e_line: int, nxtlin: int) -> None:
        """
        Write every structural pointer.

        Args:
            dfile: Address of the display file
            variables: Address of the variables area
            e_line: Address just past the variables end marker
            nxtlin: Address of the next line to run (dfile when stopped)
        """
        self.set("D_FILE", dfile)
        self.set("DF_CC", dfile + 1)
        self.set("VARS", variables)
        self.set("E_LINE", e_line)
        self.set("CH_ADD", e_line + 4)
        self.set("STKBOT", e_line + 5)
        self.set("STKEND", e_line + 5)
        self.set("NXTLIN", nxtlin)

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------

    def compare(self, other: Union["SystemVariables", bytes]) -> dict[str, bytes]:
        """
        Find the semantic fields that differ from another image.

        Structural pointers are never reported.

        Args:
            other: Another record or a 116-byte image

        Returns:
            Field name mapped to the other image's bytes, in table order
        """
        if not isinstance(other, SystemVariables):
            other = SystemVariables(bytes(other))
        diff: dict[str, bytes] = {}
        for var in SYSTEM_VARIABLES:
            if var.structural:
                continue
            theirs = other.get_bytes(var.name)
            if self.get_bytes(var.name) != theirs:
                diff[var.name] = theirs
        return diff

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        return bytes(self._data)

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __len__(self) -> int:
        return SYSVARS_SIZE

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SystemVariables):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        return f"SystemVariables(D_FILE={self.get('D_FILE')}, NXTLIN={self.get('NXTLIN')})"
