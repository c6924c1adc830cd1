"""
Entry point for running the relayer as a module.

Usage:
    python -m teleport_relayer
"""

from teleport_relayer.cli import main

if __name__ == "__main__":
    main()
