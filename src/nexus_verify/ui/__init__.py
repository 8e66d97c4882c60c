"""CLI surface: argparse router and plain-text renderers."""

from nexus_verify.ui.cli import CLIError, build_parser, run_cli
from nexus_verify.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIError", "CLIRenderer", "build_parser", "create_renderer", "run_cli"]
