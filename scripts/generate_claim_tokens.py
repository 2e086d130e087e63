#!/usr/bin/env python3
"""
Issue claim tokens for imported players.

After a roster import, every admin-created profile that nobody has
linked yet gets a single-use code the admin can send to the player.

Usage:
    python scripts/generate_claim_tokens.py --actor-id <admin uuid>
    python scripts/generate_claim_tokens.py --profile-id <uuid> --profile-id <uuid>
    python scripts/generate_claim_tokens.py --dry-run
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pelada.db.models import Profile
from pelada.db.session import get_session
from pelada.logging_setup import configure_logging
from pelada.players.admin import AdminLinkingService
from pelada.players.errors import LinkingError

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue claim tokens for unlinked imported players")
    parser.add_argument(
        "--profile-id",
        action="append",
        default=[],
        help="Only issue for this profile (repeatable); default is every unlinked import without a token",
    )
    parser.add_argument("--actor-id", default=None, help="Admin user recorded in the audit log")
    parser.add_argument("--output", default=None, help="Write profile_id,name,token CSV here")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the profiles that would get a token without changing anything",
    )
    args = parser.parse_args()

    configure_logging()

    with get_session() as session:
        service = AdminLinkingService(session)

        if args.dry_run:
            query = session.query(Profile).filter(
                Profile.created_by_admin.is_(True),
                Profile.is_placeholder.is_(False),
                Profile.user_id.is_(None),
                Profile.claim_token.is_(None),
            )
            for profile in query.order_by(Profile.name):
                print(f"{profile.id}  {profile.display_name}")
            return 0

        try:
            if args.profile_id:
                tokens = {
                    pid: service.issue_claim_token(pid, actor_id=args.actor_id)
                    for pid in args.profile_id
                }
            else:
                tokens = service.issue_missing_tokens(actor_id=args.actor_id)
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        except LinkingError as exc:
            logger.error("Token generation failed (%s)", exc.kind.value)
            return 1

        names = {
            p.id: p.display_name
            for p in session.query(Profile).filter(Profile.id.in_(list(tokens)))
        }

    rows = [(pid, names.get(pid, ""), token) for pid, token in tokens.items()]
    if args.output:
        with open(args.output, "w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow(["profile_id", "name", "claim_token"])
            writer.writerows(rows)
        print(f"Wrote {len(rows)} token(s) to {args.output}")
    else:
        for pid, name, token in rows:
            print(f"{token}  {name}  ({pid})")
        print(f"Issued {len(rows)} token(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
