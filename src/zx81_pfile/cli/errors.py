"""
Unified CLI Error Handling
==========================

Provides consistent error handling and exit codes for the zxbas commands.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click


class ExitCode(IntEnum):
    """Standard exit codes for CLI tools."""
    SUCCESS = 0
    CONVERSION_ERROR = 1  # Encoding or decoding error
    INVALID_ARGS = 2      # Invalid arguments or missing files
    INTERNAL_ERROR = 3    # Unexpected internal error


def handle_cli_exception(
    error: Exception,
    verbose: bool = False,
    error_type: str | None = None
) -> NoReturn:
    """
    Unified exception handler for the CLI commands.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors
        error_type: Optional prefix for the error message (e.g., "Encoding")

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    from zx81_pfile.errors import BasicSyntaxError, Zx81Error

    if isinstance(error, BasicSyntaxError):
        # Already formatted as "file:line:col: error: ..." with source context
        click.echo(str(error), err=True)
        sys.exit(ExitCode.CONVERSION_ERROR)

    elif isinstance(error, Zx81Error):
        prefix = f"{error_type} error: " if error_type else "Error: "
        click.echo(f"{prefix}{error}", err=True)
        sys.exit(ExitCode.CONVERSION_ERROR)

    elif isinstance(error, (click.BadParameter, FileNotFoundError, PermissionError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
