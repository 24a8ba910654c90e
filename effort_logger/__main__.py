"""Allow ``python -m effort_logger`` to start a session."""

from __future__ import annotations

import sys


def main() -> None:
    from effort_logger import run

    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
