"""Command-line interface for reporting the legacy migration status."""
from __future__ import annotations

from services.migration_status import main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
