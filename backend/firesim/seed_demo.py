from __future__ import annotations

import argparse
import sys

from fastapi import HTTPException

from .database import Base, SessionLocal, engine
from .services.session_service import (
    DEFAULT_SESSION_NAME,
    DEFAULT_TOTAL_TEAMS,
    create_session,
    seed_default_session,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a FireSim training session")
    parser.add_argument(
        "--group-name",
        default=None,
        help=f"Session name (default: seed '{DEFAULT_SESSION_NAME}' only when the store is empty)",
    )
    parser.add_argument(
        "--teams",
        type=int,
        default=DEFAULT_TOTAL_TEAMS,
        help="Number of teams, 1..12",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        try:
            if args.group_name is None:
                session_obj = seed_default_session(db)
            else:
                session_obj = create_session(db, args.group_name, args.teams)
            db.commit()
        except HTTPException as exc:
            db.rollback()
            print(f"Seed failed [{exc.status_code}]: {exc.detail}", file=sys.stderr)
            return 1

        if session_obj is None:
            print("Sessions already exist, nothing to seed")
            return 0
        print(
            f"Session created: id={session_obj.id} "
            f"name={session_obj.group_name} teams={session_obj.total_teams}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
