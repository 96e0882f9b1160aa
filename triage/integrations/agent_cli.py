"""
External agent CLI adapter.

The agent is an opaque long-running text-in/text-out process: the prompt
is written to stdin and the document text is read from stdout. Every
phase call goes through ``AgentCLIClient.run``; direct subprocess use in
services is not allowed.

Failure mapping:
  - binary missing / not executable   → AgentUnavailableError
  - wall-clock timeout exceeded       → AgentTimeoutError (process killed)
  - non-zero exit with login hint     → AgentAuthError (remediation message)
  - any other non-zero exit           → AgentExitError

No retries: a failed call fails the phase, and the operator retries it.

Output helpers:
  parse_delimited_output  splits ``=== filename ===`` sections
  extract_citations       collects ``[Source: ...]`` provenance markers
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import subprocess
from typing import Callable

from triage.core.exceptions import (
    AgentAuthError,
    AgentExitError,
    AgentTimeoutError,
    AgentUnavailableError,
)

logger = logging.getLogger(__name__)

_AUTH_MARKERS = ("Not logged in", "Please run /login")

_SECTION_RE = re.compile(r"===\s*([\w.-]+)\s*===")

_CITATION_PATTERNS = [
    ("linear", re.compile(r"\[Source:\s*Linear\s+([A-Z]+-\d+)\]", re.IGNORECASE), "Linear {}"),
    ("pylon", re.compile(r"\[Source:\s*Pylon\s+#?(\d+)\]", re.IGNORECASE), "Pylon #{}"),
    ("slack", re.compile(r"\[Source:\s*Slack\s+#([^\],]+?)(?:,\s*[^\]]+)?\]", re.IGNORECASE),
     "Slack #{}"),
    ("file", re.compile(r"\[Source:\s*local/([^\]]+)\]", re.IGNORECASE), "Local: {}"),
]


class AgentCLIClient:
    """Runs the configured agent command once per prompt.

    Usage:
        client = AgentCLIClient("claude -p --output-format text", timeout_seconds=300)
        text = client.run(prompt, cwd="/srv/investigations/4711")
    """

    def __init__(self, command: str, timeout_seconds: int = 300) -> None:
        self.argv = shlex.split(command)
        self.timeout_seconds = timeout_seconds

    @property
    def login_hint(self) -> str:
        binary = self.argv[0] if self.argv else "agent"
        return (
            f"Agent CLI authentication expired. Run '{binary} /login' in your "
            "terminal, then reset this investigation."
        )

    def run(
        self,
        prompt: str,
        cwd: str | None = None,
        timeout: int | float | None = None,
        on_output: Callable[[str], None] | None = None,
    ) -> str:
        """Send ``prompt`` to the agent and return its stdout.

        Args:
            prompt: Full prompt text, written to stdin.
            cwd: Working directory for the process.
            timeout: Override for the configured timeout (seconds).
            on_output: Called with each non-empty stdout line once the
                       process has finished (used for the activity log).

        Raises:
            AgentUnavailableError, AgentTimeoutError, AgentAuthError, AgentExitError
        """
        timeout = timeout or self.timeout_seconds
        logger.info("Running agent command: %s (timeout=%ss)", " ".join(self.argv), timeout)
        try:
            proc = subprocess.Popen(
                self.argv,
                cwd=cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise AgentUnavailableError(f"Failed to start agent: {exc}") from exc

        try:
            stdout, stderr = proc.communicate(prompt, timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            logger.warning("Agent command timed out after %ss", timeout)
            raise AgentTimeoutError(timeout)

        if on_output:
            for line in stdout.splitlines():
                if line.strip():
                    on_output(line.strip())

        if proc.returncode != 0:
            combined = stdout + stderr
            if any(marker in combined for marker in _AUTH_MARKERS):
                raise AgentAuthError(self.login_hint)
            raise AgentExitError(proc.returncode, stderr)
        return stdout


def parse_delimited_output(output: str) -> dict[str, str]:
    """Split ``=== name ===`` delimited agent output into {name: content}.

    Sections with empty content are dropped.
    """
    sections: dict[str, str] = {}
    parts = _SECTION_RE.split(output or "")
    for i in range(1, len(parts), 2):
        name = parts[i].strip()
        content = (parts[i + 1] if i + 1 < len(parts) else "").strip()
        if name and content:
            sections[name] = content
    return sections


def extract_citations(text: str) -> list[dict]:
    """Collect unique ``[Source: ...]`` citations in order of appearance per kind."""
    seen: set[str] = set()
    citations: list[dict] = []
    for kind, pattern, label in _CITATION_PATTERNS:
        for match in pattern.finditer(text or ""):
            ident = match.group(1).strip()
            if ident in seen:
                continue
            seen.add(ident)
            citations.append({"type": kind, "id": ident, "label": label.format(ident)})
    return citations


def extract_json_object(text: str) -> dict | None:
    """Return the outermost ``{...}`` object in ``text``, or None."""
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        return None
    try:
        value = json.loads(match.group(0))
    except ValueError:
        return None
    return value if isinstance(value, dict) else None
