"""Entry point for the inbox-tasks service.

Usage::

    python -m inbox_tasks run       # drain INBOX and purge Trash every minute
    python -m inbox_tasks drain     # one inbox drain cycle
    python -m inbox_tasks cleanup   # one trash purge cycle
"""

from __future__ import annotations

import asyncio
import sys

_ONE_SHOT = {"drain": "inbox", "cleanup": "trash"}


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("run", *_ONE_SHOT):
        print("Usage: python -m inbox_tasks <run|drain|cleanup>", file=sys.stderr)
        sys.exit(1)

    from .config import ServiceConfig
    from .logging import setup_logging
    from .models import CycleKind
    from .service import MailService

    mode = sys.argv[1]
    config = ServiceConfig()
    service = MailService(config)

    if mode == "run":
        asyncio.run(service.run())
        return

    setup_logging(json=config.log_json, level=config.log_level, service=config.name)
    report = asyncio.run(service.run_once(CycleKind(_ONE_SHOT[mode])))
    if report is None or not report.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
