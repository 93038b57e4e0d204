"""Unit tests for the command line interface."""

import json
import os
import sys
from unittest.mock import patch

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from brivano import main as cli
from brivano.enrichment import StepRecord, WaterfallResult, WaterfallState


def make_result(state=WaterfallState.COMPLETE):
    return WaterfallResult(
        merged_fields={"full_name": "Jane Doe", "email": "jane@acme.com", "phone": None},
        providers_used=["apollo"],
        step_log=[StepRecord(provider="apollo", success=True, fields_found=["full_name"])],
        terminal_state=state,
        is_complete=state == WaterfallState.COMPLETE,
    )


@pytest.mark.unit
class TestParser:
    """Tests for argument parsing."""

    def test_parse_titles(self):
        assert cli.parse_titles("owner, ceo ,,founder") == ["owner", "ceo", "founder"]
        assert cli.parse_titles(None) == []

    def test_enrich_arguments(self):
        args = cli.create_parser().parse_args(
            ["enrich", "--domain", "acme.com", "--name", "Jane Doe", "--company", "Acme"]
        )

        assert args.command == "enrich"
        assert args.full_name == "Jane Doe"
        assert args.company_name == "Acme"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args([])


@pytest.mark.unit
class TestMain:
    """Tests for main()."""

    def test_enrich_without_providers_fails(self, capsys):
        with patch.object(cli.config, "APOLLO_API_KEY", ""), \
                patch.object(cli.config, "HUNTER_API_KEY", ""), \
                patch.object(cli.config, "PDL_API_KEY", ""), \
                patch.object(cli.config, "CLEARBIT_API_KEY", ""):
            exit_code = cli.main(["enrich", "--domain", "acme.com"])

        assert exit_code == 1
        assert "No enrichment providers" in capsys.readouterr().out

    def test_enrich_prints_json_and_saves(self, tmp_path, capsys):
        output = tmp_path / "result.json"

        with patch.object(cli.config, "validate_for_enrichment"), \
                patch.object(cli, "run_enrich", return_value=make_result()) as run_enrich:
            exit_code = cli.main(
                ["enrich", "--domain", "acme.com", "--json", "--output", str(output)]
            )

        assert exit_code == 0
        run_enrich.assert_called_once()
        assert json.loads(output.read_text())["terminal_state"] == "complete"
        assert '"providers_used"' in capsys.readouterr().out

    def test_failed_run_exit_code(self, capsys):
        with patch.object(cli.config, "validate_for_enrichment"), \
                patch.object(cli, "run_enrich", return_value=make_result(WaterfallState.FAILED)):
            exit_code = cli.main(["enrich", "--domain", "acme.com"])

        assert exit_code == 1
        assert "FAILED" in capsys.readouterr().out

    def test_check_env(self, capsys):
        with patch.object(cli.config, "DATABASE_URL", "postgresql://localhost/brivano"), \
                patch.object(cli.config, "APOLLO_API_KEY", "key"):
            exit_code = cli.main(["check-env"])

        assert exit_code == 0
        assert "APOLLO_API_KEY" in capsys.readouterr().out
