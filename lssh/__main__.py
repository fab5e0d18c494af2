#!/usr/bin/env python3
"""
lssh - Main entry point for module execution.
"""

from lssh.cli import cli

if __name__ == '__main__':
    cli()
