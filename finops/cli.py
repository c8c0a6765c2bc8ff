"""
FinOps Autopilot command-line entry point.

Reads JSON inputs from disk, runs one pipeline stage and writes canonical
JSON to stdout or ``--out``. Logs go to stderr so stdout stays machine
readable.

Usage:
    finops ingest --events events.json --tenant acme --project billing
    finops reconcile --events events.json --tenant acme --project billing \\
        --period-start 2024-01-01T00:00:00.000Z --period-end 2024-01-31T23:59:59.999Z
    finops analyze --inputs analyze.json --stable-output --format md
    finops validate-bundle --bundle bundle.json
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

from finops import __version__
from finops.config import Settings, get_settings
from finops.engine.anomaly_detector import AnomalyDetector
from finops.engine.canonical import serialize_canonical
from finops.engine.churn_scorer import ChurnRiskScorer
from finops.engine.cost_snapshot import CostSnapshotBuilder
from finops.engine.health import get_capability_metadata, get_health_status
from finops.engine.ledger_builder import LedgerBuilder
from finops.engine.normalizer import EventNormalizer
from finops.engine.profiles import get_profile, list_profiles
from finops.engine.reconciliation import ReconciliationEngine
from finops.errors import (
    BoundaryIOError,
    ExitCode,
    FinOpsError,
    InputValidationError,
    NotFoundError,
    SecurityError,
)
from finops.jobforge.packaging import analyze, render_report, validate_bundle
from finops.models import MODEL_REGISTRY, get_model_class
from finops.models.churn import ChurnInputs
from finops.models.cost import CostSnapshotInput
from finops.models.ledger import LedgerState, ReconcileOptions
from finops.models.validation import validate_record, validate_tenant_context
from finops.utils.logging import configure_logging

logger = structlog.get_logger()


# =============================================================================
# I/O boundary
# =============================================================================


def read_json(path: str, max_bytes: int) -> Any:
    """
    Load a JSON file after existence and size checks.

    Raises:
        NotFoundError: If the file does not exist
        SecurityError: If the file exceeds ``max_bytes``
        BoundaryIOError: If the file cannot be read
        InputValidationError: If the content is not valid JSON
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise NotFoundError(f"Input file not found: {path}", details={"path": path})
    try:
        size = file_path.stat().st_size
        if size > max_bytes:
            raise SecurityError(
                f"Input file exceeds {max_bytes} bytes: {path}",
                details={"path": path, "size": size, "max_bytes": max_bytes},
            )
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BoundaryIOError(f"Failed to read {path}: {exc}", details={"path": path}) from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise InputValidationError(
            f"Invalid JSON in {path}: {exc.msg}",
            details={"path": path, "line": exc.lineno, "column": exc.colno},
        ) from exc


def write_output(text: str, out: Optional[str]) -> None:
    if not out:
        sys.stdout.write(text + "\n")
        return
    try:
        target = Path(out)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text + "\n", encoding="utf-8")
    except OSError as exc:
        raise BoundaryIOError(f"Failed to write {out}: {exc}", details={"path": out}) from exc
    logger.info("artifact_written", path=out, bytes=len(text))


def load_model(model, path: str, settings: Settings):
    outcome = validate_record(model, read_json(path, settings.max_input_bytes))
    if not outcome.success:
        raise InputValidationError(
            f"{path} does not match {model.__name__}", details={"errors": outcome.errors}
        )
    return outcome.value


def load_event_list(path: str, settings: Settings) -> list[Any]:
    records = read_json(path, settings.max_input_bytes)
    if not isinstance(records, list):
        raise InputValidationError(f"{path} must contain a JSON array of events", details={"path": path})
    return records


def require_tenant(args: argparse.Namespace) -> None:
    check = validate_tenant_context(args.tenant, args.project)
    if not check.valid:
        raise InputValidationError(check.error, details={"tenant_id": args.tenant, "project_id": args.project})


def stable(args: argparse.Namespace, settings: Settings) -> bool:
    return bool(getattr(args, "stable_output", False) or settings.stable_output)


# =============================================================================
# Commands
# =============================================================================


def cmd_ingest(args: argparse.Namespace, settings: Settings) -> int:
    require_tenant(args)
    normalizer = EventNormalizer(
        args.tenant,
        args.project,
        skip_validation=args.skip_validation,
        stable_output=stable(args, settings),
    )
    result = normalizer.ingest(load_event_list(args.events, settings))
    write_output(serialize_canonical(result), args.out)
    return ExitCode.SUCCESS


def cmd_reconcile(args: argparse.Namespace, settings: Settings) -> int:
    require_tenant(args)
    stable_output = stable(args, settings)
    outcome = validate_record(
        ReconcileOptions,
        {
            "tenant_id": args.tenant,
            "project_id": args.project,
            "period_start": args.period_start,
            "period_end": args.period_end,
        },
    )
    if not outcome.success:
        raise InputValidationError("Invalid reconciliation window", details={"errors": outcome.errors})
    options = outcome.value
    events = EventNormalizer(args.tenant, args.project, stable_output=stable_output).ingest(
        load_event_list(args.events, settings)
    ).events
    ledger = LedgerBuilder(options, stable_output=stable_output).build(events)
    report = ReconciliationEngine(options, stable_output=stable_output).reconcile(ledger)
    if args.ledger_out:
        write_output(serialize_canonical(ledger), args.ledger_out)
    write_output(serialize_canonical(report), args.out)
    return ExitCode.SUCCESS


def cmd_anomalies(args: argparse.Namespace, settings: Settings) -> int:
    require_tenant(args)
    ledger = load_model(LedgerState, args.ledger, settings)
    events = EventNormalizer(args.tenant, args.project, stable_output=stable(args, settings)).ingest(
        load_event_list(args.events, settings)
    ).events
    profile = get_profile(args.profile or settings.default_profile)
    detector = AnomalyDetector(args.tenant, args.project, profile.anomaly_thresholds)
    result = detector.detect(events, ledger, args.reference_date or ledger.computed_at)
    write_output(serialize_canonical(result), args.out)
    return ExitCode.SUCCESS


def cmd_churn(args: argparse.Namespace, settings: Settings) -> int:
    inputs = load_model(ChurnInputs, args.inputs, settings)
    profile = get_profile(args.profile or settings.default_profile)
    result = ChurnRiskScorer(profile.churn_thresholds).assess(inputs)
    write_output(serialize_canonical(result), args.out)
    return ExitCode.SUCCESS


def cmd_cost_snapshot(args: argparse.Namespace, settings: Settings) -> int:
    snapshot_input = load_model(CostSnapshotInput, args.inputs, settings)
    result = CostSnapshotBuilder(stable_output=stable(args, settings)).generate(snapshot_input)
    write_output(serialize_canonical(result), args.out)
    return ExitCode.SUCCESS


def cmd_analyze(args: argparse.Namespace, settings: Settings) -> int:
    report, bundle = analyze(
        read_json(args.inputs, settings.max_input_bytes), stable_output=stable(args, settings)
    )
    if args.bundle_out:
        write_output(serialize_canonical(bundle), args.bundle_out)
    write_output(render_report(report, args.format), args.out)
    return ExitCode.SUCCESS


def cmd_validate_bundle(args: argparse.Namespace, settings: Settings) -> int:
    result = validate_bundle(read_json(args.bundle, settings.max_input_bytes))
    write_output(serialize_canonical(result), args.out)
    return ExitCode.SUCCESS if result.success else ExitCode.VALIDATION


def cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    outcome = validate_record(get_model_class(args.contract), read_json(args.file, settings.max_input_bytes))
    write_output(serialize_canonical({"valid": outcome.success, "errors": outcome.errors}), args.out)
    return ExitCode.SUCCESS if outcome.success else ExitCode.VALIDATION


def cmd_profiles(args: argparse.Namespace, settings: Settings) -> int:
    payload = get_profile(args.id) if args.id else list_profiles()
    write_output(serialize_canonical(payload), args.out)
    return ExitCode.SUCCESS


def cmd_health(args: argparse.Namespace, settings: Settings) -> int:
    if args.capabilities:
        payload = get_capability_metadata()
    else:
        payload = get_health_status(stable_output=stable(args, settings))
    write_output(serialize_canonical(payload), args.out)
    return ExitCode.SUCCESS


# =============================================================================
# Parser
# =============================================================================


def _add_common(parser: argparse.ArgumentParser, tenant: bool = False) -> None:
    parser.add_argument("--out", help="Write output to this file instead of stdout")
    parser.add_argument(
        "--stable-output", action="store_true", help="Freeze live timestamps for reproducible output"
    )
    if tenant:
        parser.add_argument("--tenant", required=True, help="Tenant id")
        parser.add_argument("--project", required=True, help="Project id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="finops", description="Offline billing ledger reconstruction and analysis"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Validate and normalize raw billing events")
    _add_common(ingest, tenant=True)
    ingest.add_argument("--events", required=True, help="JSON array of raw events")
    ingest.add_argument("--skip-validation", action="store_true", help="Keep invalid events")
    ingest.set_defaults(handler=cmd_ingest)

    reconcile = sub.add_parser("reconcile", help="Build the ledger and reconcile MRR")
    _add_common(reconcile, tenant=True)
    reconcile.add_argument("--events", required=True, help="JSON array of raw events")
    reconcile.add_argument("--period-start", required=True, help="Window start (ISO-8601)")
    reconcile.add_argument("--period-end", required=True, help="Window end (ISO-8601)")
    reconcile.add_argument("--ledger-out", help="Also write the ledger to this file")
    reconcile.set_defaults(handler=cmd_reconcile)

    anomalies = sub.add_parser("anomalies", help="Run the anomaly detectors")
    _add_common(anomalies, tenant=True)
    anomalies.add_argument("--events", required=True, help="JSON array of raw events")
    anomalies.add_argument("--ledger", required=True, help="LedgerState JSON")
    anomalies.add_argument("--reference-date", help="Detection stamp (defaults to ledger computed_at)")
    anomalies.add_argument("--profile", help="Threshold profile id")
    anomalies.set_defaults(handler=cmd_anomalies)

    churn = sub.add_parser("churn", help="Score churn risk per customer")
    _add_common(churn)
    churn.add_argument("--inputs", required=True, help="ChurnInputs JSON")
    churn.add_argument("--profile", help="Threshold profile id")
    churn.set_defaults(handler=cmd_churn)

    cost = sub.add_parser("cost-snapshot", help="Build a cost breakdown for one period")
    _add_common(cost)
    cost.add_argument("--inputs", required=True, help="CostSnapshotInput JSON")
    cost.set_defaults(handler=cmd_cost_snapshot)

    analyze_cmd = sub.add_parser("analyze", help="Run the full pipeline and package results")
    _add_common(analyze_cmd)
    analyze_cmd.add_argument("--inputs", required=True, help="AnalyzeInputs JSON")
    analyze_cmd.add_argument("--format", choices=["md", "markdown", "json"], default="json")
    analyze_cmd.add_argument("--bundle-out", help="Write the job request bundle to this file")
    analyze_cmd.set_defaults(handler=cmd_analyze)

    bundle = sub.add_parser("validate-bundle", help="Check a job request bundle")
    _add_common(bundle)
    bundle.add_argument("--bundle", required=True, help="JobRequestBundle JSON")
    bundle.set_defaults(handler=cmd_validate_bundle)

    validate = sub.add_parser("validate", help="Check a JSON file against a named contract")
    _add_common(validate)
    validate.add_argument("--contract", required=True, choices=sorted(MODEL_REGISTRY))
    validate.add_argument("--file", required=True, help="JSON file to check")
    validate.set_defaults(handler=cmd_validate)

    profiles = sub.add_parser("profiles", help="Show threshold profiles")
    _add_common(profiles)
    profiles.add_argument("--id", help="Show a single profile")
    profiles.set_defaults(handler=cmd_profiles)

    health = sub.add_parser("health", help="Report module health")
    _add_common(health)
    health.add_argument("--capabilities", action="store_true", help="Show capability metadata")
    health.set_defaults(handler=cmd_health)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    settings = get_settings()
    args = build_parser().parse_args(argv)
    try:
        return int(args.handler(args, settings))
    except FinOpsError as exc:
        logger.error("command_failed", command=args.command, code=exc.code.value, message=exc.message)
        sys.stderr.write(json.dumps(exc.to_error_envelope(), sort_keys=True, default=str) + "\n")
        return int(exc.exit_code)


if __name__ == "__main__":
    sys.exit(main())
