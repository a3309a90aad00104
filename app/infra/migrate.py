from __future__ import annotations

import os
import sys

from alembic import command
from alembic.config import Config

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def _config() -> Config:
    return Config(ALEMBIC_CONFIG)


def run_upgrade_head() -> None:
    command.upgrade(_config(), "head")


def run_downgrade(revision: str) -> None:
    command.downgrade(_config(), revision)


if __name__ == "__main__":
    if len(sys.argv) > 2 and sys.argv[1] == "downgrade":
        run_downgrade(sys.argv[2])
    else:
        run_upgrade_head()
