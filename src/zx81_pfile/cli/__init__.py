"""
ZX81 P-file Command-Line Interface
==================================

This package provides the ``zxbas`` command-line tool:

- **zxbas encode**: BASIC text to .p / .p81
- **zxbas decode**: .p / .p81 to BASIC text
- **zxbas info**: memory layout and system variables of a P-file
- **zxbas screen**: render the saved screen as PNG

The tool is a Click application with a shared error handler
(see errors.handle_cli_exception).
"""

__all__ = ["zxbas"]
