#!/usr/bin/env python3
"""
Main entry point for the nixlink CLI.

This delegates to the UI layer in nixlink.ui.cli to keep the
console script mapping stable.
"""

from nixlink.ui.cli import run as nixlink


if __name__ == "__main__":
    nixlink()
