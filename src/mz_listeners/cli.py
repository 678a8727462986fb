"""Console-script entrypoint.

The command implementations live in `mz_listeners.service.main`.
"""

from __future__ import annotations

from mz_listeners.service.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
