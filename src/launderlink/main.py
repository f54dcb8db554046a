from __future__ import annotations

import argparse
import logging
import os

from .auth import AuthClient, SessionManager
from .cli import run_cli
from .config import ConfigError, load_config
from .context import build_context
from .db import Db, DbError
from .messaging import DeepLinkNotifier, OutboxNotifier
from .repositories.profile_repo import ProfileRepository
from .web_app import create_app


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="launderlink", description="Laundry shop orders, vouchers and pickups.")
    parser.add_argument("mode", nargs="?", choices=("cli", "web"), default="cli")
    parser.add_argument("--config", default=os.environ.get("LAUNDERLINK_CONFIG", "config.toml"))
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5000)
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        logging.basicConfig(
            level=getattr(logging, cfg.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        db = Db(cfg.db)
        sessions = SessionManager(client=AuthClient(cfg.auth), db=db, profile_repo=ProfileRepository())

        if args.mode == "web":
            app = create_app(build_context(cfg, db, OutboxNotifier()), sessions)
            app.run(host=args.host, port=args.port)
        else:
            run_cli(build_context(cfg, db, DeepLinkNotifier()), sessions)
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
