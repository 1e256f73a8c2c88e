# =============================================================================
# Plugins — Auxiliary Per-File Checks
# =============================================================================
#
# Plugins are small, independent checks that run over every changed file
# alongside the LLM agents. Their findings are merged into the consensus
# as auxiliary findings with a `plugin-<id>` type.
#
# DESIGN DECISION: Protocol, not registry.
# A plugin is any object with `id`, `name`, `uses_llm` and an async
# `execute()` method. Callers pass the list they want to run, so there's
# no directory scanning or dynamic import at runtime.
#
# DESIGN DECISION: Failure isolation per plugin/file.
# Same pattern as the multi-model fan-out: every (plugin, file) leg runs
# concurrently under asyncio.gather, and a leg that raises is logged and
# contributes no findings. A buggy plugin never fails a review.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from pr_consensus.models.analysis import (
    Finding,
    PRContext,
    Severity,
    new_item_id,
)
from pr_consensus.services.llm import LLMProvider

logger = logging.getLogger(__name__)

# Plugin checks are pattern matches, less reliable than a reviewed finding.
PLUGIN_CONFIDENCE = 0.6

_SEVERITY_FOR_LEVEL = {
    "info": Severity.LOW,
    "warning": Severity.MEDIUM,
    "error": Severity.HIGH,
}


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


@dataclass
class PluginInput:
    file_path: str
    chunk_content: str
    llm: LLMProvider | None = None  # Only set for plugins with uses_llm


@dataclass
class PluginFinding:
    message: str
    severity: str = "warning"  # "info" | "warning" | "error"
    line: int | None = None
    plugin_id: str = ""
    plugin_name: str = ""


@dataclass
class PluginOutput:
    findings: list[PluginFinding] = field(default_factory=list)


class Plugin(Protocol):
    id: str
    name: str
    uses_llm: bool

    async def execute(self, plugin_input: PluginInput) -> PluginOutput:
        ...


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def run_plugins(
    plugins: list[Plugin],
    context: PRContext,
    llm: LLMProvider | None = None,
) -> list[Finding]:
    """
    Run every plugin over every changed file and convert the results.

    Returns:
        Findings in (plugin, file) order. Failed legs contribute nothing.
    """
    if not plugins or not context.files:
        return []

    async def run_one(plugin: Plugin, path: str, content: str) -> list[Finding]:
        plugin_input = PluginInput(
            file_path=path,
            chunk_content=content,
            llm=llm if plugin.uses_llm else None,
        )
        try:
            output = await plugin.execute(plugin_input)
        except Exception as e:
            logger.warning(
                "Plugin %s failed on %s: %s", plugin.id, path, e,
            )
            return []
        return [
            to_finding(item, plugin, path) for item in output.findings
        ]

    legs = [
        run_one(plugin, path, content)
        for plugin in plugins
        for path, content in context.files.items()
    ]
    results = await asyncio.gather(*legs)

    findings = [f for leg in results for f in leg]
    logger.info(
        "Plugins complete: plugins=%d, files=%d, findings=%d",
        len(plugins), len(context.files), len(findings),
    )
    return findings


def to_finding(item: PluginFinding, plugin: Plugin, path: str) -> Finding:
    """Map a plugin finding onto the shared Finding model."""
    severity = _SEVERITY_FOR_LEVEL.get(item.severity, Severity.MEDIUM)
    return Finding(
        id=new_item_id("plugin", plugin.id),
        type=f"plugin-{plugin.id}",
        severity=severity,
        message=item.message,
        file=path,
        line_number=item.line,
        evidence=(f"{plugin.name}: {item.message}",),
        confidence=PLUGIN_CONFIDENCE,
        source_model=f"plugin:{plugin.id}",
        supporting_models=(f"plugin:{plugin.id}",),
    )


# ---------------------------------------------------------------------------
# Built-in Plugins
# ---------------------------------------------------------------------------


class SecurityPatternPlugin:
    """Line-level regex checks for secrets, string-built SQL and eval()."""

    id = "security-patterns"
    name = "Security Patterns"
    uses_llm = False

    _SECRET_PATTERNS = (
        re.compile(r"password\s*=\s*['\"][^'\"]+['\"]", re.IGNORECASE),
        re.compile(r"api[_-]?key\s*=\s*['\"][^'\"]+['\"]", re.IGNORECASE),
        re.compile(r"secret\s*=\s*['\"][^'\"]+['\"]", re.IGNORECASE),
        re.compile(r"token\s*=\s*['\"][^'\"]+['\"]", re.IGNORECASE),
    )
    _SQL_CONCAT = re.compile(
        r"query\s*\+|(SELECT|INSERT|UPDATE|DELETE)\b.*\+", re.IGNORECASE,
    )
    _EVAL = re.compile(r"\beval\s*\(")

    async def execute(self, plugin_input: PluginInput) -> PluginOutput:
        findings: list[PluginFinding] = []
        lines = plugin_input.chunk_content.split("\n")
        for number, line in enumerate(lines, 1):
            if any(p.search(line) for p in self._SECRET_PATTERNS):
                findings.append(self._finding(
                    number,
                    "Potential hardcoded secret detected. "
                    "Use environment variables instead.",
                ))
            if self._SQL_CONCAT.search(line):
                findings.append(self._finding(
                    number,
                    "Potential SQL injection risk. Use parameterized queries.",
                ))
            if self._EVAL.search(line):
                findings.append(self._finding(
                    number,
                    "eval() usage detected. This can lead to code injection.",
                ))
        return PluginOutput(findings=findings)

    def _finding(self, line: int, message: str) -> PluginFinding:
        return PluginFinding(
            message=message,
            severity="error",
            line=line,
            plugin_id=self.id,
            plugin_name=self.name,
        )


DEFAULT_PLUGINS: tuple[type, ...] = (SecurityPatternPlugin,)


def default_plugins() -> list[Plugin]:
    return [plugin_cls() for plugin_cls in DEFAULT_PLUGINS]
