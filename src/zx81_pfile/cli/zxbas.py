"""
zxbas - ZX81 BASIC Converter Command-Line Interface
====================================================

This module implements the command-line interface for converting ZX81
BASIC listings to and from tape images.

Commands
--------
- **encode**: Convert a BASIC text file to a .p or .p81 image
- **decode**: Convert a .p or .p81 image back to BASIC text
- **info**: Show the memory layout and changed system variables
- **screen**: Render the saved display file as a PNG image

Usage Examples
--------------
Encode a listing (writes game.p next to the source):
    $ zxbas encode game.bas

Encode to a cassette image with a program name:
    $ zxbas encode game.bas -o game.p81 --p81 GAME

Resolve [!include] paths from another directory:
    $ zxbas encode game.bas -I ./data

Decode to the terminal, keywords in brackets:
    $ zxbas decode game.p --bracketized

Show the memory layout:
    $ zxbas info game.p

Save a picture of the screen:
    $ zxbas screen game.p -o game.png --scale 3

Environment
-----------
ZX81_INCLUDE_DIR, ZX81_BRACKETIZED, ZX81_VARS_PER_LINE and
ZX81_SCREEN_SCALE supply defaults (see zx81_pfile.config).
"""

import logging
from pathlib import Path
from typing import Optional

import click

from zx81_pfile import __version__
from zx81_pfile.cli.errors import handle_cli_exception
from zx81_pfile.config import CodecConfig
from zx81_pfile.decoder import PfileDecoder
from zx81_pfile.encoder import BasicEncoder
from zx81_pfile.errors import Zx81Error
from zx81_pfile.p81 import build_p81
from zx81_pfile.screen import render_screen
from zx81_pfile.sysvars import (
    PROGRAM_ADDRESS,
    SYSVARS_ADDRESS,
    SYSVARS_SIZE,
    SystemVariables,
    get_variable,
)


logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if verbose else "%(message)s",
    )


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.version_option(__version__, "--version", "-V", prog_name="zxbas")
def main() -> None:
    """
    ZX81 BASIC converter.

    Convert BASIC listings to ZX81 tape images (.p, .p81) and back.

    \b
    Commands:
      encode    Convert BASIC text to .p / .p81
      decode    Convert .p / .p81 to BASIC text
      info      Show memory layout and system variables
      screen    Render the saved screen as PNG

    \b
    Examples:
      zxbas encode game.bas
      zxbas decode game.p -o game.bas
      zxbas info game.p
    """
    pass


# =============================================================================
# Encode Command
# =============================================================================

@main.command("encode")
@click.argument(
    "source",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file (default: SOURCE with .p suffix)",
)
@click.option(
    "--p81",
    "p81_name",
    default=None,
    help="Write a .p81 image with this program name",
)
@click.option(
    "-I", "--include-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Base directory for [!include] paths (default: source directory)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
def cmd_encode(
    source: Path,
    output: Optional[Path],
    p81_name: Optional[str],
    include_dir: Optional[Path],
    verbose: bool,
) -> None:
    """
    Convert a BASIC text file to a ZX81 P-file.

    A .p81 image is written when the output name ends in .p81 or when
    --p81 is given. Its program name defaults to the output file name.

    \b
    Examples:
      zxbas encode game.bas
      zxbas encode game.bas -o game.p81
      zxbas encode game.bas -o out.p81 --p81 GAME
    """
    setup_logging(verbose)
    try:
        config = CodecConfig.from_env()
        if include_dir is not None:
            config.include_dir = include_dir

        if output is None:
            output = source.with_suffix(".p81" if p81_name else ".p")

        encoder = BasicEncoder.from_file(
            source,
            include_dir=config.include_dir,
            on_warning=lambda diagnostic: click.echo(str(diagnostic), err=True),
        )
        data = encoder.create_pfile()

        if p81_name or output.suffix.lower() == ".p81":
            name = p81_name or output.stem.upper()
            data = build_p81(name, data)

        output.write_bytes(data)

        if verbose:
            click.echo(f"Created {output}")
            click.echo(f"  Size: {len(data)} bytes")
            click.echo(f"  Warnings: {len(encoder.warnings)}")
        else:
            click.echo(f"Created {output} ({len(data)} bytes)")

    except Exception as e:
        handle_cli_exception(e, verbose, "Encoding")


# =============================================================================
# Decode Command
# =============================================================================

@main.command("decode")
@click.argument(
    "image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output text file (default: standard output)",
)
@click.option(
    "-b", "--bracketized",
    is_flag=True,
    help="Write keyword tokens in [BRACKETS] everywhere",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
def cmd_decode(
    image: Path,
    output: Optional[Path],
    bracketized: bool,
    verbose: bool,
) -> None:
    """
    Convert a .p or .p81 image to BASIC text.

    The output starts with '#!' header lines describing the screen,
    variables and changed system variables, followed by the listing.

    \b
    Examples:
      zxbas decode game.p
      zxbas decode game.p81 -o game.bas
    """
    setup_logging(verbose)
    try:
        config = CodecConfig.from_env()
        bracketized = bracketized or config.bracketized

        decoder = PfileDecoder.from_file(
            image,
            bracketized=bracketized,
            vars_per_line=config.vars_per_line,
        )
        text = decoder.to_text()

        if output is None:
            click.echo(text, nl=False)
        else:
            output.write_text(text, encoding="utf-8")
            click.echo(f"Created {output}")

    except Exception as e:
        handle_cli_exception(e, verbose, "Decoding")


# =============================================================================
# Info Command
# =============================================================================

def _line_at(decoder: PfileDecoder, address: int) -> Optional[int]:
    """Line number of the program line starting at address, if any."""
    offset = address - PROGRAM_ADDRESS
    position = 0
    program = decoder.program
    while position + 4 <= len(program):
        if position == offset:
            return int.from_bytes(program[position:position + 2], "big")
        length = int.from_bytes(program[position + 2:position + 4], "little")
        position += 4 + length
    return None


@main.command("info")
@click.argument(
    "image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
def cmd_info(image: Path, verbose: bool) -> None:
    """
    Show the memory layout of a P-file.

    \b
    Example:
      zxbas info game.p

    \b
    Output format:
      Area         Address    Size
      Program      16509       123 bytes
      Display      16632       793 bytes
      Variables    17425         1 bytes
    """
    setup_logging(verbose)
    try:
        decoder = PfileDecoder.from_file(image)

        click.echo(f"P-file: {image}")
        click.echo(f"Total size: {len(decoder.data)} bytes")
        click.echo("")

        click.echo(f"{'Area':<12} {'Address':>7} {'Size':>9}")
        click.echo("-" * 34)
        areas = [
            ("Sysvars", SYSVARS_ADDRESS, SYSVARS_SIZE),
            ("Program", PROGRAM_ADDRESS, len(decoder.program)),
            ("Display", decoder.dfile_address, len(decoder.dfile)),
            ("Variables", decoder.vars_address, len(decoder.variables)),
        ]
        for name, address, size in areas:
            click.echo(f"{name:<12} {address:>7} {size:>9} bytes")
        click.echo("")

        display = "collapsed" if decoder.dfile_collapsed else "expanded"
        click.echo(f"Display file: {display}")

        if decoder.nxtlin == decoder.dfile_address:
            click.echo("Autostart: none")
        else:
            number = _line_at(decoder, decoder.nxtlin)
            if number is not None:
                click.echo(f"Autostart: line {number}")
            else:
                click.echo(f"Autostart: NXTLIN = 0x{decoder.nxtlin:04X} (not a line start)")

        changed = SystemVariables.create_default().compare(decoder.system_variables)
        if changed:
            click.echo("")
            click.echo("Changed system variables:")
            for name, raw in changed.items():
                variable = get_variable(name)
                if variable.size <= 2:
                    value = str(int.from_bytes(raw, "little"))
                else:
                    value = " ".join(f"{b:02X}" for b in raw)
                click.echo(f"  {name:<10} {value:<12} {variable.description}")

    except Exception as e:
        handle_cli_exception(e, verbose)


# =============================================================================
# Screen Command
# =============================================================================

@main.command("screen")
@click.argument(
    "image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output PNG file (default: IMAGE with .png suffix)",
)
@click.option(
    "-s", "--scale",
    type=click.IntRange(1, 8),
    default=None,
    help="Pixel scale factor, 1-8 (default: 2)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
def cmd_screen(
    image: Path,
    output: Optional[Path],
    scale: Optional[int],
    verbose: bool,
) -> None:
    """
    Render the display file of a P-file as a PNG image.

    Requires Pillow.

    \b
    Example:
      zxbas screen game.p -o game.png --scale 3
    """
    setup_logging(verbose)
    try:
        config = CodecConfig.from_env()
        if scale is None:
            scale = config.screen_scale
        if output is None:
            output = image.with_suffix(".png")

        decoder = PfileDecoder.from_file(image)
        png = render_screen(decoder.dfile, scale)
        if png is None:
            raise Zx81Error("Pillow is required for screen rendering (pip install Pillow)")

        output.write_bytes(png)
        click.echo(f"Created {output}")

    except Exception as e:
        handle_cli_exception(e, verbose)


if __name__ == "__main__":
    main()
