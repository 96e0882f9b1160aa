"""
Support Triage Orchestrator
Prompt Registry.

YAML-based prompt templates for the phase executors:
    - Templates loaded from triage/prompts/*.yaml
    - ``{{variable}}`` substitution
    - Version tracking (name → version → template)

The agent CLI takes a single text prompt, so ``render`` joins the
template's ``system`` and ``user`` parts into one string.

Usage:
    from triage.services.prompt_registry import get_registry
    prompt = get_registry().render("context_gathering", ticket_id=4711, title="...")
"""

import logging
import os
import re
import threading
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_PROMPTS_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "prompts")


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str,
                 description: str = ""):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description

    def render(self, **variables) -> str:
        parts = [self._substitute(self.system, variables),
                 self._substitute(self.user, variables)]
        return "\n\n".join(p.strip() for p in parts if p.strip())

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        """Replace {{var}} placeholders with values; unknown ones render empty."""
        def replacer(match):
            value = variables.get(match.group(1).strip())
            return "" if value is None else str(value)
        return re.sub(r"\{\{(\s*\w+\s*)\}\}", replacer, template or "")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "user_preview": self.user[:200],
        }


class PromptRegistry:
    """Loads and serves prompt templates from a directory of YAML files."""

    def __init__(self, prompts_dir: str | None = None):
        self._prompts_dir = prompts_dir or _PROMPTS_DIR
        self._templates: dict[str, dict[str, PromptTemplate]] = {}
        self._load_from_dir()

    def _load_from_dir(self):
        for yaml_file in sorted(Path(self._prompts_dir).glob("*.yaml")):
            with open(yaml_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if not data or not isinstance(data, dict):
                logger.warning("Ignoring empty prompt file %s", yaml_file.name)
                continue
            tpl = PromptTemplate(
                name=data.get("name", yaml_file.stem),
                version=str(data.get("version", "v1")),
                system=data.get("system", ""),
                user=data.get("user", ""),
                description=data.get("description", ""),
            )
            self._templates.setdefault(tpl.name, {})[tpl.version] = tpl
            logger.debug("Loaded prompt template: %s (%s)", tpl.name, tpl.version)

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get(name, {}).get(version)

    def render(self, name: str, version: str = "v1", **variables) -> str:
        """
        Render a prompt template with variables.

        Raises:
            KeyError: If template not found.
        """
        tpl = self.get(name, version)
        if not tpl:
            raise KeyError(f"Prompt template not found: {name} {version}")
        return tpl.render(**variables)

    def list_templates(self) -> list[dict]:
        return [tpl.to_dict() for versions in self._templates.values() for tpl in versions.values()]


_registry: PromptRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> PromptRegistry:
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = PromptRegistry()
        return _registry
