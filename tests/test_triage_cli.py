"""
Tests for the ciag-triage command line.
"""

import pytest

from src.triage import steps
from src.triage.artifacts import read_json
from src.triage.cli import main

from conftest import SLUG


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "triage.yaml"
    path.write_text("logging:\n  level: WARNING\n")
    return path


def run(root, config_file, *argv):
    return main(["--root", str(root), "--config", str(config_file), *argv])


class TestMain:
    """Tests for argument handling and exit codes."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: ciag-triage" in capsys.readouterr().out

    def test_missing_selection_exits_1(self, tmp_path, config_file, capsys):
        assert run(tmp_path, config_file, "seed") == 1
        err = capsys.readouterr().err
        assert err.startswith("Error: Missing operator selection")

    def test_missing_config_exits_1(self, workspace, capsys):
        assert main(["--root", str(workspace), "--config", str(workspace / "nope.yaml"), "seed"]) == 1
        assert "Missing triage config" in capsys.readouterr().err

    def test_step_order_enforced(self, workspace, config_file, capsys):
        assert run(workspace, config_file, "derive") == 1
        assert "run seed first" in capsys.readouterr().err
        assert not (workspace / "docs" / "triage" / f"TRG-{SLUG}" / "risk-register.csv").exists()

    def test_non_utf8_register_exits_1(self, workspace, config_file, capsys):
        run(workspace, config_file, "scaffold")
        run(workspace, config_file, "seed")
        register = workspace / "docs" / "triage" / f"TRG-{SLUG}" / "risk-register.csv"
        register.write_bytes(b"risk_id,title\nR-001,T\xff\xfe\n")
        capsys.readouterr()

        assert run(workspace, config_file, "derive") == 1
        err = capsys.readouterr().err
        assert err.startswith("Error: ")
        assert "not valid UTF-8" in err

    def test_unexpected_error_exits_1(self, workspace, config_file, capsys, monkeypatch):
        def fail(ctx):
            raise RuntimeError("boom")

        monkeypatch.setattr(steps, "derive", fail)
        assert run(workspace, config_file, "derive") == 1
        assert "Error: boom" in capsys.readouterr().err


class TestCommands:
    """Tests for the individual subcommands."""

    def test_scaffold_and_seed(self, workspace, config_file, capsys):
        assert run(workspace, config_file, "scaffold") == 0
        assert run(workspace, config_file, "seed") == 0
        assert run(workspace, config_file, "seed") == 0

        out = capsys.readouterr().out
        assert f"Triage scaffold ready: docs/triage/TRG-{SLUG}" in out
        assert "(written)" in out
        assert "(unchanged)" in out

    def test_closure_chain(self, workspace, config_file, intake_file, capsys):
        run(workspace, config_file, "scaffold")
        run(workspace, config_file, "seed")
        assert run(workspace, config_file, "closure", str(intake_file)) == 0
        assert f"Closure complete for {SLUG}" in capsys.readouterr().out

        triage = workspace / "docs" / "triage" / f"TRG-{SLUG}"
        assert (triage / "recommendation.md").is_file()
        assert (triage / "pilot-runbook.md").is_file()

    def test_recommend_verbose_prints_summary(self, workspace, config_file, intake_file, capsys):
        run(workspace, config_file, "scaffold")
        run(workspace, config_file, "seed")
        run(workspace, config_file, "apply-intake", str(intake_file))
        run(workspace, config_file, "derive")
        run(workspace, config_file, "apply-policy")
        capsys.readouterr()

        assert main(["-v", "--root", str(workspace), "--config", str(config_file), "recommend"]) == 0
        assert '"total_risks": 8' in capsys.readouterr().out

    def test_intake_template(self, workspace, config_file):
        assert run(workspace, config_file, "intake-template") == 0
        template = read_json(workspace / "fixtures" / "intake" / f"{SLUG}.intake-response.json")
        assert template["operator"]["slug"] == SLUG

    def test_prequal_and_sales(self, tmp_path, config_file, tier1_file, capsys):
        assert run(tmp_path, config_file, "prequal", "--tier1", str(tier1_file), "--slug", "Harbor Inns") == 0
        assert "Operator selected: Harbor Inns (harbor-inns)" in capsys.readouterr().out
        assert run(tmp_path, config_file, "sales") == 0
        assert read_json(tmp_path / "out" / "sales" / "harbor-inns" / "02_pipeline_state.json")["locations"] == 12

    def test_manifest_and_validate(self, workspace, config_file, tier1_file, intake_file, capsys):
        run(workspace, config_file, "prequal", "--tier1", str(tier1_file), "--slug", SLUG)
        run(workspace, config_file, "sales")
        run(workspace, config_file, "scaffold")
        run(workspace, config_file, "seed")
        run(workspace, config_file, "closure", str(intake_file))
        assert run(workspace, config_file, "manifest", "--tier1", str(tier1_file),
                   "--intake", str(intake_file)) == 0
        assert run(workspace, config_file, "validate-manifest", "--verify-hashes") == 0
        assert f"Manifest validator PASS: {SLUG} (11 artifact(s))" in capsys.readouterr().out

    def test_validate_without_inputs_fails(self, workspace, config_file, capsys):
        run(workspace, config_file, "scaffold")
        run(workspace, config_file, "seed")
        run(workspace, config_file, "manifest")
        assert run(workspace, config_file, "validate-manifest") == 1
        assert "Manifest missing required kinds" in capsys.readouterr().err

    def test_golden_path(self, workspace, config_file, tier1_file, intake_file, capsys):
        code = run(workspace, config_file, "golden-path", "--tier1", str(tier1_file),
                   "--slug", SLUG, "--intake", str(intake_file))
        assert code == 0
        assert f"Golden Path PASS: {SLUG} (locations=42, 11 artifact(s))" in capsys.readouterr().out
