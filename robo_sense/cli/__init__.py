"""
CLI subpackage for command-line interface tools.

Available CLI scripts:
- run: Live camera classification with optional sensor log replay

Usage:
    python -m robo_sense.cli.run --help
"""

__all__ = ["run"]
