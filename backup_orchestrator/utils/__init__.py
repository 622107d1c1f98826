"""Utility modules for backup orchestration."""

from .formatters import format_duration, format_file_size, parse_type_list
from .process import CommandResult, find_executable, run_command

__all__ = ["format_duration", "format_file_size", "parse_type_list",
           "CommandResult", "find_executable", "run_command"]
