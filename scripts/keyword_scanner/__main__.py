#!/usr/bin/env python3
"""
Module entry point for scripts.keyword_scanner
Enables: python -m scripts.keyword_scanner
"""

from .scanner import main

if __name__ == "__main__":
    raise SystemExit(main())
