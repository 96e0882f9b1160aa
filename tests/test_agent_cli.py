"""
tests/test_agent_cli.py — agent CLI adapter and output helpers.

The process tests drive the real subprocess path with the current Python
interpreter standing in for the agent binary.
"""

import shlex
import sys

import pytest

from triage.core.exceptions import (
    AgentAuthError,
    AgentExitError,
    AgentTimeoutError,
    AgentUnavailableError,
)
from triage.integrations.agent_cli import (
    AgentCLIClient,
    extract_citations,
    extract_json_object,
    parse_delimited_output,
)
from triage.integrations.ticket_source import AgentTicketSource, TicketSourceError


def _python_agent(code, timeout=10):
    return AgentCLIClient(f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}", timeout)


# ═════════════════════════════════════════════════════════════════════════
# Process handling
# ═════════════════════════════════════════════════════════════════════════


class TestAgentCLIClient:
    def test_prompt_goes_to_stdin_and_stdout_is_returned(self):
        client = _python_agent("import sys; print(sys.stdin.read().upper())")
        assert client.run("hello agent").strip() == "HELLO AGENT"

    def test_on_output_receives_non_empty_lines(self):
        client = _python_agent("print('one'); print(); print('two')")
        lines = []
        client.run("", on_output=lines.append)
        assert lines == ["one", "two"]

    def test_missing_binary(self):
        client = AgentCLIClient("definitely-not-an-agent-binary-xyz")
        with pytest.raises(AgentUnavailableError):
            client.run("prompt")

    def test_timeout_kills_process(self):
        client = _python_agent("import time; time.sleep(5)")
        with pytest.raises(AgentTimeoutError) as exc:
            client.run("prompt", timeout=0.5)
        assert exc.value.error_type == "general"

    def test_login_marker_maps_to_auth_error(self):
        client = _python_agent("import sys; print('Not logged in'); sys.exit(1)")
        with pytest.raises(AgentAuthError) as exc:
            client.run("prompt")
        assert exc.value.error_type == "auth"
        assert "/login" in str(exc.value)

    def test_nonzero_exit(self):
        client = _python_agent("import sys; sys.stderr.write('boom'); sys.exit(3)")
        with pytest.raises(AgentExitError) as exc:
            client.run("prompt")
        assert exc.value.returncode == 3
        assert "boom" in str(exc.value)


# ═════════════════════════════════════════════════════════════════════════
# Output helpers
# ═════════════════════════════════════════════════════════════════════════


class TestParseDelimitedOutput:
    def test_sections(self):
        output = "preamble\n=== summary.md ===\nSummary text\n=== customer-response.md ===\nHi there\n"
        assert parse_delimited_output(output) == {
            "summary.md": "Summary text",
            "customer-response.md": "Hi there",
        }

    def test_empty_sections_dropped(self):
        assert parse_delimited_output("=== summary.md ===\n\n=== issue-draft.md ===\nX") == {
            "issue-draft.md": "X",
        }

    def test_no_delimiters(self):
        assert parse_delimited_output("just text") == {}
        assert parse_delimited_output(None) == {}


class TestExtractCitations:
    def test_kinds_and_dedup(self):
        text = (
            "See [Source: Pylon #123] and [Source: Linear ENG-42]. "
            "Also [Source: Slack #support, 2025-01-05] and [Source: local/notes.txt]. "
            "Again [Source: Pylon 123]."
        )
        citations = extract_citations(text)
        assert citations == [
            {"type": "linear", "id": "ENG-42", "label": "Linear ENG-42"},
            {"type": "pylon", "id": "123", "label": "Pylon #123"},
            {"type": "slack", "id": "support", "label": "Slack #support"},
            {"type": "file", "id": "notes.txt", "label": "Local: notes.txt"},
        ]

    def test_no_citations(self):
        assert extract_citations("") == []


class TestExtractJsonObject:
    def test_embedded_object(self):
        assert extract_json_object('Here you go: {"title": "X", "tags": []} done') == {
            "title": "X", "tags": [],
        }

    def test_invalid(self):
        assert extract_json_object("no json") is None
        assert extract_json_object("{not json}") is None


# ═════════════════════════════════════════════════════════════════════════
# Ticket source
# ═════════════════════════════════════════════════════════════════════════


class _StubAgent:
    def __init__(self, output):
        self.output = output
        self.prompts = []

    def run(self, prompt, cwd=None, timeout=None, on_output=None):
        self.prompts.append(prompt)
        return self.output


class TestAgentTicketSource:
    def test_fetch_parses_json(self):
        agent = _StubAgent('{"title": "Okta sync failing", "body": "help"}')
        ticket = AgentTicketSource(agent).fetch_ticket(4711)
        assert ticket["title"] == "Okta sync failing"
        assert ticket["ticket_id"] == 4711
        assert '"4711"' in agent.prompts[0]

    def test_fetch_without_json_raises(self):
        with pytest.raises(TicketSourceError):
            AgentTicketSource(_StubAgent("I could not find that issue")).fetch_ticket(1)
