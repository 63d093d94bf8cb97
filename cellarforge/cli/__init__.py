"""Cellarforge CLI — Typer-based command-line interface.

Provides the ``cellarforge`` command.  Installed store paths go to
stdout; progress and diagnostics go to stderr through Rich.
"""
