"""Catalog version generation.

Usage:
    python -m app.scripts.generate_catalog_version
    python -m app.scripts.generate_catalog_version --tenant central --tenant norte

Computes the canonical catalog hash and appends a new catalog_versions
row only when the catalog changed since the latest version.
"""

import argparse
import logging
import sys
from typing import TextIO

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.database import get_session_factory
from app.core.tenant import TenantContext
from app.services.catalog_versioner import CatalogVersioner
from app.services.range_store import SchemaError

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None, out: TextIO | None = None) -> int:
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(description="Generate a catalog version if the catalog changed")
    parser.add_argument("--tenant", action="append", default=[], help="Tenant slug (repeatable)")
    parser.add_argument("--database-url", help="Explicit database URL")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    out = out or sys.stdout

    if args.database_url:
        contexts = [TenantContext(tenant=t, database_url=args.database_url) for t in args.tenant or [None]]
    else:
        contexts = [TenantContext(tenant=t) for t in args.tenant] or [TenantContext()]

    exit_code = 0
    for context in contexts:
        try:
            with get_session_factory(context.engine())() as session:
                result = CatalogVersioner(session).commit_version()
        except (ValueError, SchemaError) as e:
            logger.error(f"{context.label}: {e}")
            exit_code = max(exit_code, 1)
            continue
        except SQLAlchemyError as e:
            logger.error(f"{context.label}: storage error: {e}")
            exit_code = 2
            continue

        if result.changed:
            out.write(f"{context.label}: version {result.version_number} {result.hash_sha256}\n")
        else:
            out.write(f"{context.label}: unchanged (version {result.version_number}) {result.hash_sha256}\n")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
