#!/usr/bin/env python3
"""
DeLex client
Entry point for ``python -m delex_client.main``
"""
from .cli import main


if __name__ == "__main__":
    main()
