"""Tests for the direct workflow runner and its command line."""

import json

import pytest
import structlog
from click.testing import CliRunner

from worker import run_workflow as runner

DEFINITION = {
    "id": "wf-1",
    "nodes": [
        {"id": "t", "data": {"type": "trigger", "label": "Start", "config": {"triggerType": "Manual"}}},
        {
            "id": "check",
            "data": {
                "type": "action",
                "label": "Check",
                "config": {"actionType": "Condition", "condition": "{{@t:Start.amount}} >= 100"},
            },
        },
    ],
    "edges": [{"id": "e1", "source": "t", "target": "check"}],
}

@pytest.fixture
def cli_runner(monkeypatch):
    """Click runner with engine logging silenced so output is only the JSON result."""
    monkeypatch.setattr(
        runner,
        "setup_logging",
        lambda **kwargs: structlog.configure(logger_factory=structlog.ReturnLoggerFactory()),
    )
    yield CliRunner()
    structlog.reset_defaults()


@pytest.mark.unit
class TestRunWorkflow:
    @pytest.mark.asyncio
    async def test_run_workflow_async(self):
        result = await runner.run_workflow_async(DEFINITION, trigger_input={"amount": 150})
        assert result["success"] is True
        assert result["outputs"]["check"]["data"]["condition"] is True
        assert result["results"]["t"]["data"]["amount"] == 150
        json.dumps(result)

    def test_run_workflow_sync(self):
        result = runner.run_workflow_sync(DEFINITION, trigger_input={"amount": 5})
        assert result["success"] is True
        assert result["results"]["check"]["data"]["condition"] is False

    def test_safe_serialize(self):
        class Opaque:
            def __str__(self):
                return "opaque"

        assert runner._safe_serialize({"a": (1, Opaque()), 2: None}) == {"a": [1, "opaque"], "2": None}

@pytest.mark.unit
class TestCommandLine:
    def test_main_prints_result(self, cli_runner, tmp_path):
        path = tmp_path / "workflow.json"
        path.write_text(json.dumps(DEFINITION))

        result = cli_runner.invoke(
            runner.main, [str(path), "--trigger-input", '{"amount": 250}', "--execution-id", "exec-cli"]
        )

        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["success"] is True
        assert payload["results"]["check"]["data"]["values"] == {"Start.amount": 250}

    def test_failed_run_exit_code(self, cli_runner, tmp_path):
        definition = {
            "nodes": DEFINITION["nodes"][:1] + [
                {"id": "x", "data": {"type": "action", "config": {"actionType": "Nonexistent"}}},
            ],
            "edges": [{"source": "t", "target": "x"}],
        }
        path = tmp_path / "broken.json"
        path.write_text(json.dumps(definition))

        result = cli_runner.invoke(runner.main, [str(path)])
        assert result.exit_code == 1
        assert json.loads(result.output)["success"] is False

    def test_missing_definition_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(runner.main, [str(tmp_path / "missing.json")])
        assert result.exit_code == 2

    def test_invalid_definition_json(self, cli_runner, tmp_path):
        path = tmp_path / "workflow.json"
        path.write_text("{not json")
        result = cli_runner.invoke(runner.main, [str(path)])
        assert result.exit_code == 2
        assert "not valid JSON" in result.output

    def test_trigger_input_must_be_object(self, cli_runner, tmp_path):
        path = tmp_path / "workflow.json"
        path.write_text(json.dumps(DEFINITION))
        result = cli_runner.invoke(runner.main, [str(path), "--trigger-input", "[1, 2]"])
        assert result.exit_code == 2
        assert "--trigger-input must be a JSON object" in result.output
