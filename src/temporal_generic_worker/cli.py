"""Console script shim; the CLI lives in `temporal_generic_worker.runtime.main`."""

from __future__ import annotations

from temporal_generic_worker.runtime.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
