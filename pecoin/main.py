"""Entry point for the PEcoin cache admin console."""

from __future__ import annotations

import logging

from pecoin.config import PROJECT_ROOT

LOG_FILE = PROJECT_ROOT / "pecoin.log"


def main() -> None:
    # The console owns the terminal, so logs go to a file.
    logging.basicConfig(
        filename=LOG_FILE,
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from pecoin.ui.app import CacheAdminApp

    app = CacheAdminApp()
    app.run()


if __name__ == "__main__":
    main()
