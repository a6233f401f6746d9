#!/usr/bin/env python3
"""Compatibility shim for the face analysis CLI entry point."""

import sys

from app.cli import FaceAnalysisSystem, main

__all__ = ["FaceAnalysisSystem", "main"]


if __name__ == "__main__":
    sys.exit(main())
