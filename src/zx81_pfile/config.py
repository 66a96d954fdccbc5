"""
Codec Configuration
===================

Settings shared by the command-line tool and library callers that want
the same defaults. Configuration can come from:
- Default values (defined here)
- Environment variables (CodecConfig.from_env)
- Command-line options, which override both
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os


_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class CodecConfig:
    """
    Configuration for encoding and decoding.

    Attributes:
        include_dir: Base directory for [!include] paths (default: the
            directory of the source file)
        bracketized: Decode keyword tokens in bracketed form everywhere
        vars_per_line: Bytes per '#!basic-vars:' line when decoding
        screen_scale: Pixel scale factor for rendered screens
    """
    include_dir: Optional[Path] = None
    bracketized: bool = False
    vars_per_line: int = 20
    screen_scale: int = 2

    @classmethod
    def from_env(cls) -> "CodecConfig":
        """
        Create CodecConfig from environment variables.

        Environment variables (all optional):
            ZX81_INCLUDE_DIR: Base directory for [!include] paths
            ZX81_BRACKETIZED: Bracketized decoding (1/true/yes/on)
            ZX81_VARS_PER_LINE: Bytes per basic-vars line (positive integer)
            ZX81_SCREEN_SCALE: Screen scale factor (1-8)

        Returns:
            CodecConfig with values from environment variables
        """
        config = cls()

        if include_dir := os.environ.get("ZX81_INCLUDE_DIR"):
            config.include_dir = Path(include_dir)

        if bracketized := os.environ.get("ZX81_BRACKETIZED"):
            config.bracketized = bracketized.strip().lower() in _TRUE_VALUES

        if vars_per_line := os.environ.get("ZX81_VARS_PER_LINE"):
            try:
                value = int(vars_per_line)
            except ValueError:
                value = 0  # Ignore invalid values
            if value > 0:
                config.vars_per_line = value

        if scale := os.environ.get("ZX81_SCREEN_SCALE"):
            try:
                value = int(scale)
            except ValueError:
                value = 0  # Ignore invalid values
            if 1 <= value <= 8:
                config.screen_scale = value

        return config
