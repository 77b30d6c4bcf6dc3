"""Module entry point: python -m path_claim ..."""

from __future__ import annotations

from path_claim.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
