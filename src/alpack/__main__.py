"""Module entrypoint for ``python -m alpack``."""

from __future__ import annotations

from alpack.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
