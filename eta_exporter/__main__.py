from __future__ import annotations

from eta_exporter.cli import main

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
