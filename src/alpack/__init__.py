"""
alpack — package root

File: src/alpack/__init__.py

Purpose
- Manage named Alpine Linux root filesystems and run commands inside them
  without host root privileges, through proot or bubblewrap.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
