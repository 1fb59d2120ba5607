"""User interfaces for alpack."""

from alpack.ui.cli import CLIError, build_parser, run_cli
from alpack.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIError", "CLIRenderer", "build_parser", "create_renderer", "run_cli"]
