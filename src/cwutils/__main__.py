"""Module entrypoint for `python -m cwutils`."""

from __future__ import annotations

from cwutils.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
