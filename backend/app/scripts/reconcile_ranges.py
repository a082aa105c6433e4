"""Reference range audit and reconciliation.

Usage:
    python -m app.scripts.reconcile_ranges audit --like "Hemoglobina"
    python -m app.scripts.reconcile_ranges fill-gaps --like TSH
    python -m app.scripts.reconcile_ranges split-ambos --like Hemoglobina --band 18-120 --apply
    python -m app.scripts.reconcile_ranges force-exclusive --like "PSA|Prostat" --target Masculino
    python -m app.scripts.reconcile_ranges snap-boundaries --tenant central --tenant norte
    python -m app.scripts.reconcile_ranges trim-overlaps --like Glucosa --apply

Every repair command is a dry run unless --apply (or --write) is given.
The plan is always printed before anything is written.

Exit codes: 0 success, 1 invalid input or schema, 2 storage failure.
"""

import argparse
import logging
import sys
from collections.abc import Callable
from typing import TextIO

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.database import get_session_factory
from app.core.tenant import TenantContext
from app.schemas.base import FillMode
from app.services.boundary_snapper import BoundarySnapStrategy
from app.services.deduplicator import DedupeExactStrategy
from app.services.gap_filler import GapFillStrategy
from app.services.legacy_migrator import LegacyMigrationStrategy
from app.services.overlap_trimmer import TrimOverlapsStrategy
from app.services.range_store import NameFilter, SchemaError
from app.services.reconciliation import ReconciliationPipeline, RepairStrategy
from app.services.sex_reconciler import CollapseAmbosStrategy, ForceExclusiveStrategy, SplitAmbosStrategy

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_STORAGE_ERROR = 2


def parse_band(value: str) -> tuple[float, float]:
    """Parse an age band such as '18-120'."""
    try:
        start, end = (float(part) for part in value.split("-", 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid age band {value!r}, expected MIN-MAX") from None
    if start >= end:
        raise argparse.ArgumentTypeError(f"empty age band {value!r}")
    return start, end


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reconcile_ranges",
        description="Audit and reconcile laboratory reference ranges",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--tenant",
        action="append",
        default=[],
        help="Tenant slug; repeat to process several tenants one after another",
    )
    common.add_argument("--database-url", help="Explicit database URL (overrides tenant resolution)")
    common.add_argument("--like", help="Analysis/parameter name filter, e.g. 'Hemoglobina|Hematocrito'")
    common.add_argument(
        "--format",
        choices=("table", "json"),
        default="table",
        help="Summary output format (default: table)",
    )
    common.add_argument(
        "--apply",
        "--write",
        dest="apply",
        action="store_true",
        help="Write the planned changes (default is a dry run)",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("audit", parents=[common], help="Report duplicates and overlaps (read-only)")

    fill = commands.add_parser("fill-gaps", parents=[common], help="Close age coverage gaps")
    fill.add_argument("--mode", choices=[m.value for m in FillMode], default=FillMode.ADJACENT.value)
    fill.add_argument("--boundaries", action="store_true", help="Also fill 12-13, 17-18 and 64-65 bands")
    fill.add_argument("--fill-empty", action="store_true", help="Placeholder for parameters without ranges")

    split = commands.add_parser("split-ambos", parents=[common], help="Clone Ambos rows into M and F rows")
    split.add_argument("--band", type=parse_band, help="Only split Ambos rows within MIN-MAX")
    split.add_argument("--remove-source", action="store_true", help="Delete the Ambos row after splitting")

    commands.add_parser("collapse-ambos", parents=[common], help="Delete Ambos rows duplicated by M and F rows")

    force = commands.add_parser("force-exclusive", parents=[common], help="Convert Ambos rows to one sex")
    force.add_argument("--target", required=True, choices=("Masculino", "Femenino"))

    commands.add_parser("snap-boundaries", parents=[common], help="Snap near-miss age band edges")
    commands.add_parser("migrate-legacy", parents=[common], help="Copy legacy ranges into the catalog")
    commands.add_parser("dedupe", parents=[common], help="Delete exact duplicate ranges")
    commands.add_parser(
        "trim-overlaps", parents=[common], help="Trim overlapping same-sex ranges that share their values"
    )
    return parser


STRATEGIES: dict[str, Callable[[argparse.Namespace], RepairStrategy]] = {
    "fill-gaps": lambda args: GapFillStrategy(
        mode=FillMode(args.mode), boundaries=args.boundaries, fill_empty=args.fill_empty
    ),
    "split-ambos": lambda args: SplitAmbosStrategy(band=args.band, remove_source=args.remove_source),
    "collapse-ambos": lambda args: CollapseAmbosStrategy(),
    "force-exclusive": lambda args: ForceExclusiveStrategy(args.target),
    "snap-boundaries": lambda args: BoundarySnapStrategy(),
    "migrate-legacy": lambda args: LegacyMigrationStrategy(),
    "dedupe": lambda args: DedupeExactStrategy(),
    "trim-overlaps": lambda args: TrimOverlapsStrategy(),
}


def tenant_contexts(args: argparse.Namespace) -> list[TenantContext]:
    if args.database_url:
        return [TenantContext(tenant=t, database_url=args.database_url) for t in args.tenant or [None]]
    return [TenantContext(tenant=t) for t in args.tenant] or [TenantContext()]


def run_for_tenant(
    context: TenantContext,
    args: argparse.Namespace,
    name_filter: NameFilter,
    strategy: RepairStrategy | None,
    out: TextIO,
) -> bool:
    """Run the command against one tenant. Returns the report's ok flag."""
    engine = context.engine()
    with get_session_factory(engine)() as session:
        pipeline = ReconciliationPipeline(session, tenant=context.tenant)
        out.write(f"== {context.label} ==\n")
        if strategy is None:
            report = pipeline.audit(name_filter)
            if args.format == "json":
                out.write(report.model_dump_json(indent=2) + "\n")
            else:
                for issue in report.issues:
                    out.write(f"  {issue.kind.value:32} {issue.analysis} / {issue.parameter}: {issue.detail}\n")
                for row in report.invalid:
                    out.write(
                        f"  {'SKIPPED_INVALID_ROW':32} {row.analysis} / {row.parameter}: "
                        f"range {row.id}: {'; '.join(row.problems)}\n"
                    )
                out.write(
                    f"  matched={report.matched} high={report.high} warn={report.warn} skipped={report.skipped}\n"
                )
            return True

        report = pipeline.run(strategy, name_filter, apply=args.apply, stream=out)
        if args.format == "json":
            out.write(report.model_dump_json(indent=2) + "\n")
        else:
            out.write(
                f"  matched={report.matched} inserted={report.inserted} updated={report.updated} "
                f"deleted={report.deleted} skipped={report.skipped}"
                f"{'' if report.applied else ' (dry run)'}\n"
            )
            if report.error:
                out.write(f"  ERROR: {report.error}\n")
        return report.ok


def main(argv: list[str] | None = None, out: TextIO | None = None) -> int:
    """Main entry point for the script."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    out = out or sys.stdout

    try:
        name_filter = NameFilter.parse(args.like)
        strategy = STRATEGIES[args.command](args) if args.command != "audit" else None
        contexts = tenant_contexts(args)
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_INPUT_ERROR

    exit_code = EXIT_OK
    for context in contexts:
        try:
            if not run_for_tenant(context, args, name_filter, strategy, out):
                exit_code = EXIT_STORAGE_ERROR
        except (ValueError, SchemaError) as e:
            logger.error(f"{context.label}: {e}")
            exit_code = max(exit_code, EXIT_INPUT_ERROR)
        except SQLAlchemyError as e:
            logger.error(f"{context.label}: storage error: {e}")
            exit_code = EXIT_STORAGE_ERROR
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
