from __future__ import annotations

import logging
import sys

from autoshop.cli import run_cli
from autoshop.config import ConfigError, load_config
from autoshop.container import build_services
from autoshop.db import Db, DbError


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    path = argv[0] if argv else "config.toml"
    try:
        cfg = load_config(path)
        logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        db = Db(cfg.db)
        run_cli(db, build_services(cfg.business))
        return 0
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except DbError as e:
        print(f"[DB ERROR] {e}")
        return 3
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
