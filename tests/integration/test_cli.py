"""Integration tests for the CLI commands."""

import os
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from click.testing import CliRunner

from gamal.cli import cli
from gamal.llm.client import CompletionClient
from gamal.pipeline.runner import Pipeline
from gamal.services.searxng import SearchClient

from conftest import JUPITER_RESULTS, REASONING


JUPITER_ANSWER = "Jupiter is the largest planet in the Solar System [citation:1]."


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    """Private config file pointing at the scripted backends."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "llm:\n"
        "  base_url: https://llm.test/v1\n"
        "  model: test-model\n"
        "search:\n"
        "  url: https://searx.test\n"
    )
    os.chmod(path, 0o600)
    return path


@pytest.fixture
def jupiter_pipeline(make_pipeline, scripted_llm, scripted_search):
    return make_pipeline(scripted_llm([REASONING, JUPITER_ANSWER]), scripted_search(JUPITER_RESULTS))


class TestCLI:
    """Test command dispatch and output."""

    def test_version(self, runner):
        """Test --version prints the version."""
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_ask(self, runner, config_file, jupiter_pipeline):
        """Test a single question is answered with references."""
        with patch("gamal.cli.build_pipeline", return_value=jupiter_pipeline):
            result = runner.invoke(
                cli,
                ["--config", str(config_file), "--skip-check", "ask", "Which planet is the largest?"],
            )

        assert result.exit_code == 0, result.output
        assert "⇢ Searching for largest planet in the solar system..." in result.output
        assert "Jupiter is the largest planet in the Solar System [1]." in result.output
        assert "[1] https://en.wikipedia.org/wiki/Jupiter" in result.output
        assert "[citation:1]" not in result.output

    def test_ask_failure(self, runner, config_file, make_pipeline, scripted_llm, scripted_search):
        """Test a failed turn prints the error and exits non-zero."""
        pipeline = make_pipeline(scripted_llm([400]), scripted_search(JUPITER_RESULTS))

        with patch("gamal.cli.build_pipeline", return_value=pipeline), \
                patch("asyncio.sleep", new_callable=AsyncMock):
            result = runner.invoke(cli, ["--config", str(config_file), "--skip-check", "ask", "q"])

        assert result.exit_code == 1
        assert "Reason failed: HTTP error with the status: 400" in result.output

    def test_check(self, runner, config_file, make_pipeline, scripted_llm, scripted_search):
        """Test the readiness probe reports a working LLM."""
        pipeline = make_pipeline(scripted_llm(["Paris."]), scripted_search(JUPITER_RESULTS))

        with patch("gamal.cli.build_pipeline", return_value=pipeline):
            result = runner.invoke(cli, ["--config", str(config_file), "check"])

        assert result.exit_code == 0, result.output
        assert "Using SearXNG at https://searx.test." in result.output
        assert "LLM is ready" in result.output

    def test_check_failure(self, runner, config_file, make_pipeline, scripted_llm, scripted_search):
        """Test an unreachable LLM stops the command."""
        pipeline = make_pipeline(scripted_llm([401]), scripted_search(JUPITER_RESULTS))

        with patch("gamal.cli.build_pipeline", return_value=pipeline), \
                patch("asyncio.sleep", new_callable=AsyncMock):
            result = runner.invoke(cli, ["--config", str(config_file), "check"])

        assert result.exit_code == 1
        assert "LLM is not ready!" in result.output

    def test_check_connection_refused(self, runner, config_file, make_pipeline, scripted_llm, scripted_search):
        """Test a backend that is not running is reported, not raised."""
        refused = httpx.ConnectError("All connection attempts failed")
        pipeline = make_pipeline(scripted_llm([refused]), scripted_search(JUPITER_RESULTS))

        with patch("gamal.cli.build_pipeline", return_value=pipeline):
            result = runner.invoke(cli, ["--config", str(config_file), "check"])

        assert result.exit_code == 1
        assert "LLM is not ready!" in result.output
        assert "All connection attempts failed" in result.output
        assert not isinstance(result.exception, httpx.HTTPError)

    def test_check_non_json_body(self, runner, config_file, llm_config, search_config):
        """Test a backend answering HTML instead of JSON is reported."""
        html = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>It works!</html>"))
        pipeline = Pipeline(
            CompletionClient(llm_config, transport=html),
            SearchClient(search_config, transport=html),
        )

        with patch("gamal.cli.build_pipeline", return_value=pipeline):
            result = runner.invoke(cli, ["--config", str(config_file), "check"])

        assert result.exit_code == 1
        assert "LLM is not ready!" in result.output

    def test_open_config_permissions(self, runner, config_file):
        """Test a readable config file is refused."""
        os.chmod(config_file, 0o644)

        result = runner.invoke(cli, ["--config", str(config_file), "--skip-check", "ask", "q"])

        assert result.exit_code == 1
        assert "chmod 600" in result.output

    def test_default_runs_server_when_port_configured(self, runner, config_file, jupiter_pipeline):
        """Test the root command serves HTTP when a port is configured."""
        config_file.write_text(config_file.read_text() + "server:\n  port: 8123\n")

        with patch("gamal.cli.build_pipeline", return_value=jupiter_pipeline), \
                patch("uvicorn.run") as mock_run:
            result = runner.invoke(cli, ["--config", str(config_file), "--skip-check"])

        assert result.exit_code == 0, result.output
        assert mock_run.call_args.kwargs["port"] == 8123
        assert "Listening on port 8123" in result.output


class TestEvalCommand:
    """Test running test-spec files."""

    def write_spec(self, tmp_path, expected):
        path = tmp_path / "planets.txt"
        path.write_text(
            "Story: Planets\n"
            "User: Which planet is the largest?\n"
            f"Assistant: {expected}\n"
            "Pipeline.Reason.Language: /English/\n"
        )
        return path

    def test_passing_file(self, runner, tmp_path, config_file, jupiter_pipeline):
        """Test a passing spec file exits with status 0."""
        spec = self.write_spec(tmp_path, "/Jupiter/")

        with patch("gamal.cli.build_pipeline", return_value=jupiter_pipeline):
            result = runner.invoke(cli, ["--config", str(config_file), "--skip-check", "eval", str(spec)])

        assert result.exit_code == 0, result.output
        assert "SUCCESS: 1 test(s)." in result.output

    def test_failing_file(self, runner, tmp_path, config_file, jupiter_pipeline):
        """Test a failed assertion exits with status 1."""
        spec = self.write_spec(tmp_path, "/Saturn/")

        with patch("gamal.cli.build_pipeline", return_value=jupiter_pipeline):
            result = runner.invoke(cli, ["--config", str(config_file), "--skip-check", "eval", str(spec)])

        assert result.exit_code == 1
        assert "Expected Assistant to contain: /Saturn/" in result.output

    def test_unknown_role(self, runner, tmp_path, config_file, jupiter_pipeline):
        """Test a malformed spec file is reported as an error."""
        spec = tmp_path / "broken.txt"
        spec.write_text("Narrator: hello\n")

        with patch("gamal.cli.build_pipeline", return_value=jupiter_pipeline):
            result = runner.invoke(cli, ["--config", str(config_file), "--skip-check", "eval", str(spec)])

        assert result.exit_code == 1
        assert "Unknown role: Narrator!" in result.output
