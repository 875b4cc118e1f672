"""
Main module entry point for Rotor

Allows running as: python -m rotor
"""

import sys

from .supervisor_cli import main

if __name__ == "__main__":
    sys.exit(main())
