"""Always-on ESLint rule set, independent of the project's configuration.

Rules are picked for high bug likelihood and few false positives. Results are
advisory, so every finding is reported as a warning whatever the rule level.
Rules that need type information only run when the workspace root has a
``tsconfig.json``.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Mapping, Sequence

from pr_quality.analyzers.base import Analyzer, RawDiagnostic, filter_to_diff
from pr_quality.analyzers.eslint_engine import EslintEngine, EslintEngineError, EslintFileResult
from pr_quality.logger import get_logger, log_with_context
from pr_quality.models.finding import Finding, FrozenDiffMap, Severity
from pr_quality.utils.process import CommandNotFoundError, CommandRunner, run_command

logger = get_logger()

BUILTIN_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")


@dataclass(frozen=True, slots=True)
class RuleSet:
    label: str
    # import name -> npm module specifier
    plugins: Mapping[str, str]
    rules: Mapping[str, str]
    parser: str | None = None
    parser_options: Mapping[str, object] | None = None


BASE_RULES = RuleSet(
    label="base rules",
    plugins={"react-hooks": "eslint-plugin-react-hooks", "promise": "eslint-plugin-promise"},
    rules={
        "react-hooks/rules-of-hooks": "error",
        "react-hooks/exhaustive-deps": "error",
        "no-async-promise-executor": "error",
        "no-unreachable": "error",
        "no-unsafe-finally": "error",
        "no-undef": "error",
        "promise/always-return": "error",
    },
)

TYPE_AWARE_RULES = RuleSet(
    label="type-aware rules",
    plugins={"@typescript-eslint": "@typescript-eslint/eslint-plugin"},
    rules={
        "@typescript-eslint/no-floating-promises": "error",
        "@typescript-eslint/no-misused-promises": "error",
    },
    parser="@typescript-eslint/parser",
    parser_options={"project": True},
)


def render_flat_config(rule_set: RuleSet) -> str:
    """Render ``rule_set`` as an ESLint flat config ES module."""

    lines: List[str] = []
    plugin_entries: List[str] = []
    for index, (name, module) in enumerate(rule_set.plugins.items()):
        binding = f"plugin{index}"
        lines.append(f"import {binding} from {json.dumps(module)};")
        plugin_entries.append(f"{json.dumps(name)}: {binding}")
    if rule_set.parser:
        lines.append(f"import parser from {json.dumps(rule_set.parser)};")

    config: List[str] = [f"    plugins: {{ {', '.join(plugin_entries)} }},"]
    if rule_set.parser:
        options = json.dumps(dict(rule_set.parser_options or {}))
        config.append(f"    languageOptions: {{ parser, parserOptions: {options} }},")
    config.append(f"    rules: {json.dumps(dict(rule_set.rules))},")

    lines.append("")
    lines.append("export default [")
    lines.append("  {")
    lines.extend(config)
    lines.append("  },")
    lines.append("];")
    return "\n".join(lines) + "\n"


@contextmanager
def _temporary_config(workspace: Path, rule_set: RuleSet) -> Iterator[Path]:
    # Written inside the workspace so plugin imports resolve against its node_modules.
    path = workspace / f".pr-quality-{uuid.uuid4().hex[:8]}.eslint.config.mjs"
    path.write_text(render_flat_config(rule_set), encoding="utf-8")
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


class BaselineAnalyzer(Analyzer):
    name = "eslint"

    def __init__(
        self,
        workspace: str | Path,
        *,
        eslint_command: Sequence[str] = ("npx", "--no-install", "eslint"),
        runner: CommandRunner = run_command,
    ) -> None:
        super().__init__(workspace)
        self._engine = EslintEngine(
            self.workspace,
            command=eslint_command,
            # the generated config is flat even if the project still uses .eslintrc
            env={"ESLINT_USE_FLAT_CONFIG": "true"},
            runner=runner,
        )

    def has_tsconfig(self) -> bool:
        return (self.workspace / "tsconfig.json").is_file()

    async def _run_rule_set(
        self, files: Sequence[str], rule_set: RuleSet
    ) -> List[EslintFileResult]:
        ctx_logger = log_with_context(logger, analyzer="eslint/builtin")
        try:
            with _temporary_config(self.workspace, rule_set) as config_path:
                return await self._engine.lint_files(files, config_file=config_path.name)
        except EslintEngineError as exc:
            ctx_logger.warning(f"{rule_set.label} failed: {exc}")
        except OSError as exc:
            ctx_logger.warning(f"{rule_set.label} could not write its config: {exc}")
        return []

    async def run(self, diff_map: FrozenDiffMap) -> List[Finding]:
        ctx_logger = log_with_context(logger, analyzer="eslint/builtin")
        files = sorted(path for path in diff_map if path.endswith(BUILTIN_EXTENSIONS))
        if not files:
            return []

        has_tsconfig = await asyncio.to_thread(self.has_tsconfig)
        ctx_logger.info(
            f"Running built-in rules on {len(files)} file(s) "
            f"(tsconfig: {'found' if has_tsconfig else 'missing'})"
        )

        try:
            results = await self._run_rule_set(files, BASE_RULES)
            if has_tsconfig:
                results += await self._run_rule_set(files, TYPE_AWARE_RULES)
        except CommandNotFoundError as exc:
            ctx_logger.info(f"ESLint unavailable ({exc}); skipping built-in rules")
            return []

        raw = [
            RawDiagnostic(
                file=result.file_path,
                line=message.line,
                col=message.column,
                rule_id=message.rule_id,
                severity=Severity.WARNING,
                message=message.message,
            )
            for result in results
            if not result.ignored
            for message in result.messages
        ]
        findings = filter_to_diff(self, raw, diff_map, severity_override=Severity.WARNING)
        ctx_logger.info(f"Built-in rules complete: {len(findings)} finding(s)")
        return findings
