"""
Recompute every user's upload count from their file records.

The upload count is only an advisory aggregate; a failed increment or
decrement during upload/delete leaves it stale. This walks all users and
rewrites the count wherever it disagrees with the number of file records.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from filedrop.config import get_settings
from filedrop.db import RecordStore
from filedrop.dependencies import build_backends

logger = logging.getLogger(__name__)


def recount_uploads(records: RecordStore, *, dry_run: bool) -> int:
    """Return the number of users whose count was (or would be) corrected."""
    corrected = 0
    for principal in records.iter_principals():
        actual = len(records.list_file_records(principal.id))
        if actual == principal.upload_count:
            continue
        logger.info(
            "%s: upload count %d -> %d%s",
            principal.id,
            principal.upload_count,
            actual,
            " (dry run)" if dry_run else "",
        )
        if not dry_run:
            records.set_upload_count(principal.id, actual)
        corrected += 1
    return corrected


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report drift without writing corrected counts.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    backends = build_backends(get_settings())
    corrected = recount_uploads(backends.records, dry_run=args.dry_run)
    logger.info("Corrected %d user(s)", corrected)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
