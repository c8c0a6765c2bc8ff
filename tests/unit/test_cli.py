"""
Unit tests for the finops command-line entry point.
"""

import json

import pytest

from finops.cli import main, read_json
from finops.errors import ExitCode, InputValidationError, NotFoundError, SecurityError
from finops.models.cost import CostSnapshotInput
from tests.conftest import (
    JAN_END,
    JAN_START,
    PROJECT,
    TENANT,
    january_records,
    make_analyze_inputs,
    make_churn_inputs,
    make_event,
)

TENANT_ARGS = ["--tenant", TENANT, "--project", PROJECT]


def _write(path, payload) -> str:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def _error_envelope(stderr: str) -> dict:
    for line in reversed(stderr.strip().splitlines()):
        try:
            envelope = json.loads(line)
        except json.JSONDecodeError:
            continue
        if "code" in envelope and "retryable" in envelope:
            return envelope
    raise AssertionError(f"No error envelope in stderr: {stderr!r}")


@pytest.fixture
def events_file(tmp_path):
    return _write(tmp_path / "events.json", january_records())


# =============================================================================
# Pipeline commands
# =============================================================================


class TestPipelineCommands:
    """Tests for ingest, reconcile, anomalies, churn and cost-snapshot."""

    def test_ingest(self, events_file, capsys):
        code = main(["ingest", "--events", events_file, *TENANT_ARGS, "--stable-output"])

        output = json.loads(capsys.readouterr().out)
        assert code == ExitCode.SUCCESS
        assert output["stats"]["valid"] == 3
        assert output["events"][0]["normalized_at"] == "1970-01-01T00:00:00.000Z"

    def test_reconcile_writes_report_and_ledger(self, events_file, tmp_path):
        out = tmp_path / "out" / "recon.json"
        ledger_out = tmp_path / "out" / "ledger.json"

        code = main(
            [
                "reconcile",
                "--events", events_file,
                *TENANT_ARGS,
                "--period-start", JAN_START,
                "--period-end", JAN_END,
                "--out", str(out),
                "--ledger-out", str(ledger_out),
                "--stable-output",
            ]
        )

        assert code == ExitCode.SUCCESS
        assert json.loads(out.read_text())["is_balanced"] is True
        assert json.loads(ledger_out.read_text())["total_mrr_cents"] == 5000

    def test_reconcile_rejects_bad_window(self, events_file, capsys):
        code = main(
            ["reconcile", "--events", events_file, *TENANT_ARGS, "--period-start", "jan", "--period-end", JAN_END]
        )

        assert code == ExitCode.VALIDATION
        assert _error_envelope(capsys.readouterr().err)["code"] == "VALIDATION_ERROR"

    def test_anomalies(self, events_file, tmp_path, capsys):
        ledger_out = tmp_path / "ledger.json"
        main(
            [
                "reconcile", "--events", events_file, *TENANT_ARGS,
                "--period-start", JAN_START, "--period-end", JAN_END,
                "--out", str(tmp_path / "recon.json"), "--ledger-out", str(ledger_out),
            ]
        )
        capsys.readouterr()

        code = main(
            ["anomalies", "--events", events_file, "--ledger", str(ledger_out), *TENANT_ARGS, "--profile", "base"]
        )

        output = json.loads(capsys.readouterr().out)
        assert code == ExitCode.SUCCESS
        assert output["stats"]["total"] == 0

    def test_churn(self, tmp_path, capsys):
        inputs = _write(tmp_path / "churn.json", make_churn_inputs().model_dump(mode="json"))

        code = main(["churn", "--inputs", inputs])

        output = json.loads(capsys.readouterr().out)
        assert code == ExitCode.SUCCESS
        assert output["risks"][0]["customer_id"] == "cus_1"

    def test_cost_snapshot(self, tmp_path, capsys):
        snapshot_input = CostSnapshotInput(
            tenant_id=TENANT,
            project_id=PROJECT,
            period_start=JAN_START,
            period_end=JAN_END,
            billing_events=[make_event()],
        )
        inputs = _write(tmp_path / "cost.json", snapshot_input.model_dump(mode="json"))

        code = main(["cost-snapshot", "--inputs", inputs, "--stable-output"])

        output = json.loads(capsys.readouterr().out)
        assert code == ExitCode.SUCCESS
        assert output["report"]["total_cost_cents"] == 5000

    def test_cost_snapshot_refusal_is_not_an_error(self, tmp_path, capsys):
        snapshot_input = {"tenant_id": TENANT, "project_id": PROJECT, "period_start": JAN_START, "period_end": JAN_END}
        inputs = _write(tmp_path / "cost.json", snapshot_input)

        code = main(["cost-snapshot", "--inputs", inputs])

        assert code == ExitCode.SUCCESS
        assert json.loads(capsys.readouterr().out)["refusal"].startswith("INSUFFICIENT_DATA")


# =============================================================================
# Packaging commands
# =============================================================================


class TestPackagingCommands:
    """Tests for analyze and validate-bundle."""

    def test_analyze_markdown_and_bundle(self, tmp_path, capsys):
        inputs = _write(tmp_path / "analyze.json", make_analyze_inputs())
        bundle_out = tmp_path / "bundle.json"

        code = main(
            ["analyze", "--inputs", inputs, "--format", "md", "--bundle-out", str(bundle_out), "--stable-output"]
        )

        assert code == ExitCode.SUCCESS
        assert capsys.readouterr().out.startswith("# FinOps Autopilot Report")
        assert len(json.loads(bundle_out.read_text())["requests"]) == 3

    def test_validate_bundle_round_trip(self, tmp_path, capsys):
        inputs = _write(tmp_path / "analyze.json", make_analyze_inputs())
        bundle_out = tmp_path / "bundle.json"
        main(["analyze", "--inputs", inputs, "--bundle-out", str(bundle_out), "--out", str(tmp_path / "r.json")])

        code = main(["validate-bundle", "--bundle", str(bundle_out)])

        assert code == ExitCode.SUCCESS
        assert json.loads(capsys.readouterr().out) == {"errors": [], "success": True}

    def test_validate_bundle_rejects_tampering(self, tmp_path, capsys):
        inputs = _write(tmp_path / "analyze.json", make_analyze_inputs())
        bundle_out = tmp_path / "bundle.json"
        main(["analyze", "--inputs", inputs, "--bundle-out", str(bundle_out), "--out", str(tmp_path / "r.json")])
        bundle = json.loads(bundle_out.read_text())
        bundle["tenant_id"] = "mallory"
        _write(bundle_out, bundle)
        capsys.readouterr()

        code = main(["validate-bundle", "--bundle", str(bundle_out)])

        assert code == ExitCode.VALIDATION
        assert json.loads(capsys.readouterr().out)["success"] is False

    def test_analyze_invalid_inputs(self, tmp_path, capsys):
        inputs = _write(tmp_path / "analyze.json", {"tenant_id": TENANT})

        code = main(["analyze", "--inputs", inputs])

        assert code == ExitCode.VALIDATION
        envelope = _error_envelope(capsys.readouterr().err)
        assert envelope["message"] == "Invalid analyze inputs"
        assert envelope["retryable"] is False


# =============================================================================
# Utility commands
# =============================================================================


class TestUtilityCommands:
    """Tests for validate, profiles and health."""

    def test_validate_contract(self, tmp_path, capsys):
        path = _write(tmp_path / "event.json", make_event().model_dump(mode="json"))

        code = main(["validate", "--contract", "billing_event", "--file", path])

        assert code == ExitCode.SUCCESS
        assert json.loads(capsys.readouterr().out)["valid"] is True

    def test_validate_contract_failure(self, tmp_path, capsys):
        path = _write(tmp_path / "event.json", {"event_id": "evt_1"})

        code = main(["validate", "--contract", "billing_event", "--file", path])

        output = json.loads(capsys.readouterr().out)
        assert code == ExitCode.VALIDATION
        assert output["valid"] is False
        assert "tenant_id: Field required" in output["errors"]

    def test_profiles(self, capsys):
        main(["profiles", "--id", "settler"])

        assert json.loads(capsys.readouterr().out)["profile_id"] == "settler"

    def test_profiles_list(self, capsys):
        main(["profiles"])

        assert len(json.loads(capsys.readouterr().out)) == 6

    def test_health(self, capsys):
        code = main(["health", "--stable-output"])

        output = json.loads(capsys.readouterr().out)
        assert code == ExitCode.SUCCESS
        assert output["status"] == "healthy"
        assert output["timestamp"] == "1970-01-01T00:00:00.000Z"

    def test_capabilities(self, capsys):
        main(["health", "--capabilities"])

        assert json.loads(capsys.readouterr().out)["module_id"] == "finops"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert "finops 0.1.0" in capsys.readouterr().out


# =============================================================================
# I/O boundary
# =============================================================================


class TestBoundary:
    """Tests for file handling failures and their exit codes."""

    def test_missing_file(self, tmp_path, capsys):
        code = main(["ingest", "--events", str(tmp_path / "nope.json"), *TENANT_ARGS])

        assert code == ExitCode.VALIDATION
        assert _error_envelope(capsys.readouterr().err)["code"] == "NOT_FOUND"

    def test_invalid_tenant(self, events_file, capsys):
        code = main(["ingest", "--events", events_file, "--tenant", "ACME", "--project", PROJECT])

        assert code == ExitCode.VALIDATION
        assert _error_envelope(capsys.readouterr().err)["code"] == "VALIDATION_ERROR"

    def test_events_must_be_an_array(self, tmp_path, capsys):
        path = _write(tmp_path / "events.json", {"events": []})

        code = main(["ingest", "--events", path, *TENANT_ARGS])

        assert code == ExitCode.VALIDATION

    def test_oversized_input(self, events_file, monkeypatch, capsys):
        monkeypatch.setenv("MAX_INPUT_BYTES", "10")

        code = main(["ingest", "--events", events_file, *TENANT_ARGS])

        assert code == ExitCode.VALIDATION
        assert _error_envelope(capsys.readouterr().err)["code"] == "SECURITY_ERROR"

    def test_read_json_errors(self, tmp_path):
        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")

        with pytest.raises(NotFoundError):
            read_json(str(tmp_path / "missing.json"), 1024)
        with pytest.raises(SecurityError):
            read_json(str(broken), 2)
        with pytest.raises(InputValidationError) as exc_info:
            read_json(str(broken), 1024)
        assert exc_info.value.details["line"] == 1
