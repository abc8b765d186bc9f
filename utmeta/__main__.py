"""Allow ``python -m utmeta``."""

from __future__ import annotations

from utmeta.cli.main import main

if __name__ == "__main__":
    main()
