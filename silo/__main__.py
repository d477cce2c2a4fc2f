"""
Module entrypoint for the Silo CLI.

This file exists so that `python -m silo ...` works consistently in all
environments, including when the console-script wrapper is not installed.
"""

from __future__ import annotations

from silo.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
