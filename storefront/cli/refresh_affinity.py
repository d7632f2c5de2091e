# =============================================
# File: storefront/cli/refresh_affinity.py
# Purpose: CLI entrypoint to recompute tag affinity scores (scheduled batch or one user).
# Usage:
#   python -m storefront.cli.refresh_affinity                 # every user
#   python -m storefront.cli.refresh_affinity --user-id U123  # one user
# =============================================
from __future__ import annotations
import argparse
import sys

from storefront.db import repo
from storefront.services.affinity import recompute_affinity


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Recompute per-user tag affinity scores from interaction events.")
    ap.add_argument("--user-id", default=None, help="Only recompute this user (default: all users)")
    ap.add_argument("--db-url", default=None, help="Override DB_URL (default: env DB_URL or sqlite:///./storefront.db)")
    args = ap.parse_args(argv)

    if args.db_url:
        repo.set_engine(repo.make_engine(args.db_url))
    repo.init_db()

    report = recompute_affinity(args.user_id)

    if report.users == 0:
        print("[WARN] No interaction events found; nothing to recompute.", file=sys.stderr)
        return 0
    if report.failures:
        print(
            f"[ERR] {report.failures}/{report.users} users failed: {', '.join(report.failed_users)}",
            file=sys.stderr,
        )
        return 1

    print(f"[OK] Recomputed {report.users} users ({report.updated} tag scores).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
