#!/usr/bin/env python3
"""
Entry point for the admin CLI.

Run with: python -m media_tool
"""

from media_tool.cli import cli

if __name__ == '__main__':
    cli()
