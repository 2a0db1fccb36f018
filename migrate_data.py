"""Command-line interface for migrating legacy project blobs."""
from __future__ import annotations

from services.migration import main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
