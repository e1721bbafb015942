# =============================================
# File: farm2table/cli/refresh_vectors.py
# Purpose: CLI entrypoint to recompute stale produce / knowledge embeddings.
# Usage:
#   python -m farm2table.cli.refresh_vectors [--force] [--produce-only | --knowledge-only]
# =============================================
from __future__ import annotations
import argparse
import sys

from farm2table.db.repo import init_db
from farm2table.services.container import build_services
from farm2table.utils.logging import configure_logging


def main(argv=None, services=None):
    ap = argparse.ArgumentParser(description="Refresh stored embeddings whose source text changed.")
    ap.add_argument("--force", action="store_true", help="Re-embed every record, even if up to date")
    scope = ap.add_mutually_exclusive_group()
    scope.add_argument("--produce-only", action="store_true", help="Only refresh produce listings")
    scope.add_argument("--knowledge-only", action="store_true", help="Only refresh knowledge base entries")
    args = ap.parse_args(argv)

    if services is None:
        configure_logging()
        init_db()
        services = build_services()

    counts = services.catalog.refresh_embeddings(
        force=args.force,
        produce=not args.knowledge_only,
        knowledge=not args.produce_only,
    )

    print(
        f"[OK] produce updated: {counts['produce_updated']}, knowledge updated: {counts['knowledge_updated']}, "
        f"up to date: {counts['skipped']}, failed: {counts['failed']}"
    )
    if counts["failed"]:
        print("[WARN] Some embeddings could not be generated. Check the embedding backend.", file=sys.stderr)
        sys.exit(1)
    return counts


if __name__ == "__main__":
    main()
