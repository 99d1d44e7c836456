"""
Entry point for running aistack via `python -m aistack`.

Runs one supervisory pass by default; see `aistack --help`.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
