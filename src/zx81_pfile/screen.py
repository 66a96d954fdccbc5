"""
ZX81 Screen Rendering
=====================

Renders the display file (D-FILE) of a P-file as a bitmap, showing the
screen the program left behind when it was saved.

The display is 32 x 24 characters of 8 x 8 pixels (256 x 192). Each
display file byte selects one of the 64 glyphs in the ROM character set;
bit 7 selects inverse video. Rows end with NEWLINE and may be shorter
than 32 characters (collapsed display file), in which case the rest of
the row is blank.
"""

import io
import logging
from typing import Optional

from zx81_pfile.decoder import PfileDecoder
from zx81_pfile.tokens import NEWLINE

logger = logging.getLogger(__name__)


SCREEN_COLUMNS = 32
SCREEN_ROWS = 24
CHAR_SIZE = 8
SCREEN_WIDTH = SCREEN_COLUMNS * CHAR_SIZE
SCREEN_HEIGHT = SCREEN_ROWS * CHAR_SIZE

INK = 0
PAPER = 255

# The ZX81 ROM character set (0x1E00-0x1FFF), 8 bytes per glyph
ROM_CHARSET = bytes([
    0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00,
    0xf0, 0xf0, 0xf0, 0xf0, 0x00, 0x00, 0x00, 0x00,
    0x0f, 0x0f, 0x0f, 0x0f, 0x00, 0x00, 0x00, 0x00,
    0xff, 0xff, 0xff, 0xff, 0x00, 0x00, 0x00, 0x00,
    0x00, 0x00, 0x00, 0x00, 0xf0, 0xf0, 0xf0, 0xf0,
    0xf0, 0xf0, 0xf0, 0xf0, 0xf0, 0xf0, 0xf0, 0xf0,
    0x0f, 0x0f, 0x0f, 0x0f, 0xf0, 0xf0, 0xf0, 0xf0,
    0xff, 0xff, 0xff, 0xff, 0xf0, 0xf0, 0xf0, 0xf0,
    0xaa, 0x55, 0xaa, 0x55, 0xaa, 0x55, 0xaa, 0x55,
    0x00, 0x00, 0x00, 0x00, 0xaa, 0x55, 0xaa, 0x55,
    0xaa, 0x55, 0xaa, 0x55, 0x00, 0x00, 0x00, 0x00,
    0x00, 0x24, 0x24, 0x00, 0x00, 0x00, 0x00, 0x00,
    0x00, 0x1c, 0x22, 0x78, 0x20, 0x20, 0x7e, 0x00,
    0x00, 0x08, 0x3e, 0x28, 0x3e, 0x0a, 0x3e, 0x08,
    0x00, 0x00, 0x00, 0x10, 0x00, 0x00, 0x10, 0x00,
    0x00, 0x3c, 0x42, 0x04, 0x08, 0x00, 0x08, 0x00,
    0x00, 0x04, 0x08, 0x08, 0x08, 0x08, 0x04, 0x00,
    0x00, 0x20, 0x10, 0x10, 0x10, 0x10, 0x20, 0x00,
    0x00, 0x00, 0x10, 0x08, 0x04, 0x08, 0x10, 0x00,
    0x00, 0x00, 0x04, 0x08, 0x10, 0x08, 0x04, 0x00,
    0x00, 0x00, 0x00, 0x3e, 0x00, 0x3e, 0x00, 0x00,
    0x00, 0x00, 0x08, 0x08, 0x3e, 0x08, 0x08, 0x00,
    0x00, 0x00, 0x00, 0x00, 0x3e, 0x00, 0x00, 0x00,
    0x00, 0x00, 0x14, 0x08, 0x3e, 0x08, 0x14, 0x00,
    0x00, 0x00, 0x02, 0x04, 0x08, 0x10, 0x20, 0x00,
    0x00, 0x00, 0x10, 0x00, 0x00, 0x10, 0x10, 0x20,
    0x00, 0x00, 0x00, 0x00, 0x00, 0x08, 0x08, 0x10,
    0x00, 0x00, 0x00, 0x00, 0x00, 0x18, 0x18, 0x00,
    0x00, 0x3c, 0x46, 0x4a, 0x52, 0x62, 0x3c, 0x00,
    0x00, 0x18, 0x28, 0x08, 0x08, 0x08, 0x3e, 0x00,
    0x00, 0x3c, 0x42, 0x02, 0x3c, 0x40, 0x7e, 0x00,
    0x00, 0x3c, 0x42, 0x0c, 0x02, 0x42, 0x3c, 0x00,
    0x00, 0x08, 0x18, 0x28, 0x48, 0x7e, 0x08, 0x00,
    0x00, 0x7e, 0x40, 0x7c, 0x02, 0x42, 0x3c, 0x00,
    0x00, 0x3c, 0x40, 0x7c, 0x42, 0x42, 0x3c, 0x00,
    0x00, 0x7e, 0x02, 0x04, 0x08, 0x10, 0x10, 0x00,
    0x00, 0x3c, 0x42, 0x3c, 0x42, 0x42, 0x3c, 0x00,
    0x00, 0x3c, 0x42, 0x42, 0x3e, 0x02, 0x3c, 0x00,
    0x00, 0x3c, 0x42, 0x42, 0x7e, 0x42, 0x42, 0x00,
    0x00, 0x7c, 0x42, 0x7c, 0x42, 0x42, 0x7c, 0x00,
    0x00, 0x3c, 0x42, 0x40, 0x40, 0x42, 0x3c, 0x00,
    0x00, 0x78, 0x44, 0x42, 0x42, 0x44, 0x78, 0x00,
    0x00, 0x7e, 0x40, 0x7c, 0x40, 0x40, 0x7e, 0x00,
    0x00, 0x7e, 0x40, 0x7c, 0x40, 0x40, 0x40, 0x00,
    0x00, 0x3c, 0x42, 0x40, 0x4e, 0x42, 0x3c, 0x00,
    0x00, 0x42, 0x42, 0x7e, 0x42, 0x42, 0x42, 0x00,
    0x00, 0x3e, 0x08, 0x08, 0x08, 0x08, 0x3e, 0x00,
    0x00, 0x02, 0x02, 0x02, 0x42, 0x42, 0x3c, 0x00,
    0x00, 0x44, 0x48, 0x70, 0x48, 0x44, 0x42, 0x00,
    0x00, 0x40, 0x40, 0x40, 0x40, 0x40, 0x7e, 0x00,
    0x00, 0x42, 0x66, 0x5a, 0x42, 0x42, 0x42, 0x00,
    0x00, 0x42, 0x62, 0x52, 0x4a, 0x46, 0x42, 0x00,
    0x00, 0x3c, 0x42, 0x42, 0x42, 0x42, 0x3c, 0x00,
    0x00, 0x7c, 0x42, 0x42, 0x7c, 0x40, 0x40, 0x00,
    0x00, 0x3c, 0x42, 0x42, 0x52, 0x4a, 0x3c, 0x00,
    0x00, 0x7c, 0x42, 0x42, 0x7c, 0x44, 0x42, 0x00,
    0x00, 0x3c, 0x40, 0x3c, 0x02, 0x42, 0x3c, 0x00,
    0x00, 0xfe, 0x10, 0x10, 0x10, 0x10, 0x10, 0x00,
    0x00, 0x42, 0x42, 0x42, 0x42, 0x42, 0x3c, 0x00,
    0x00, 0x42, 0x42, 0x42, 0x42, 0x24, 0x18, 0x00,
    0x00, 0x42, 0x42, 0x42, 0x42, 0x5a, 0x24, 0x00,
    0x00, 0x42, 0x24, 0x18, 0x18, 0x24, 0x42, 0x00,
    0x00, 0x82, 0x44, 0x28, 0x10, 0x10, 0x10, 0x00,
    0x00, 0x7e, 0x04, 0x08, 0x10, 0x20, 0x7e, 0x00,
])


def screen_pixels(dfile: bytes) -> list[int]:
    """
    Convert a display file into a pixel buffer.

    Args:
        dfile: Display file bytes (a leading NEWLINE is skipped)

    Returns:
        SCREEN_WIDTH * SCREEN_HEIGHT values, 1 for ink and 0 for paper,
        row by row
    """
    pixels = [0] * (SCREEN_WIDTH * SCREEN_HEIGHT)
    body = dfile[1:] if dfile[:1] == bytes([NEWLINE]) else dfile

    for row, line in enumerate(body.split(bytes([NEWLINE]))[:SCREEN_ROWS]):
        for column, code in enumerate(line[:SCREEN_COLUMNS]):
            glyph = (code & 0x7F) * CHAR_SIZE
            for y in range(CHAR_SIZE):
                # Codes 0x40-0x7F have no glyph
                bits = ROM_CHARSET[glyph + y] if glyph < len(ROM_CHARSET) else 0
                if code & 0x80:
                    bits ^= 0xFF
                base = (row * CHAR_SIZE + y) * SCREEN_WIDTH + column * CHAR_SIZE
                for x in range(CHAR_SIZE):
                    if bits & (0x80 >> x):
                        pixels[base + x] = 1
    return pixels


def render_screen(dfile: bytes, scale: int = 2) -> Optional[bytes]:
    """
    Render a display file as PNG image (requires PIL).

    Args:
        dfile: Display file bytes
        scale: Pixel scale factor (default 2)

    Returns:
        PNG image bytes, or None if PIL not available
    """
    try:
        from PIL import Image
    except ImportError:
        return None

    pixels = screen_pixels(dfile)
    img = Image.new("L", (SCREEN_WIDTH * scale, SCREEN_HEIGHT * scale), color=PAPER)

    for y in range(SCREEN_HEIGHT):
        for x in range(SCREEN_WIDTH):
            if not pixels[y * SCREEN_WIDTH + x]:
                continue
            for sy in range(scale):
                for sx in range(scale):
                    img.putpixel((x * scale + sx, y * scale + sy), INK)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    logger.debug(f"Rendered screen at scale {scale} ({len(buffer.getvalue())} bytes PNG)")
    return buffer.getvalue()


def render_pfile_screen(pfile: bytes, scale: int = 2) -> Optional[bytes]:
    """Render the screen stored in a P-file as PNG image."""
    return render_screen(PfileDecoder(pfile).dfile, scale)
