"""
Command builders for the programs shipped in an extracted archive.
"""

from .builder import Command, CommandBuilder, PgWalDumpBuilder

__all__ = ["Command", "CommandBuilder", "PgWalDumpBuilder"]
