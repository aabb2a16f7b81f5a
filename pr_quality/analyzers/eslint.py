"""Analyzer that lints changed files with the project's own ESLint configuration."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Dict, List, Sequence

from pr_quality.analyzers.base import Analyzer, RawDiagnostic, filter_to_diff
from pr_quality.analyzers.eslint_engine import (
    ESLINT_ERROR_LEVEL,
    EslintEngine,
    EslintEngineError,
)
from pr_quality.logger import get_logger, log_with_context
from pr_quality.models.finding import Finding, FrozenDiffMap, Severity
from pr_quality.utils.process import CommandNotFoundError, CommandRunner, run_command

logger = get_logger()

FLAT_CONFIG_FILES = (
    "eslint.config.js",
    "eslint.config.mjs",
    "eslint.config.cjs",
    "eslint.config.ts",
    "eslint.config.mts",
    "eslint.config.cts",
)
LEGACY_CONFIG_FILES = (
    ".eslintrc.js",
    ".eslintrc.cjs",
    ".eslintrc.mjs",
    ".eslintrc.json",
    ".eslintrc.yaml",
    ".eslintrc.yml",
    ".eslintrc",
)


class EslintConfigMode(str, Enum):
    FLAT = "flat"
    LEGACY = "legacy"
    NONE = "none"


def _package_json_has_eslint_config(workspace: Path) -> bool:
    package_json = workspace / "package.json"
    if not package_json.is_file():
        return False
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return False
    return isinstance(data, dict) and "eslintConfig" in data


def detect_config_mode(workspace: str | Path) -> EslintConfigMode:
    """Detect which ESLint configuration format the workspace root uses."""

    root = Path(workspace)
    if any((root / name).is_file() for name in FLAT_CONFIG_FILES):
        return EslintConfigMode.FLAT
    if any((root / name).is_file() for name in LEGACY_CONFIG_FILES):
        return EslintConfigMode.LEGACY
    if _package_json_has_eslint_config(root):
        return EslintConfigMode.LEGACY
    return EslintConfigMode.NONE


def mode_environment(mode: EslintConfigMode) -> Dict[str, str]:
    # ESLint 9 only loads .eslintrc.* when flat config is switched off; set it
    # explicitly either way so an inherited value cannot override the detection
    if mode is EslintConfigMode.LEGACY:
        return {"ESLINT_USE_FLAT_CONFIG": "false"}
    if mode is EslintConfigMode.FLAT:
        return {"ESLINT_USE_FLAT_CONFIG": "true"}
    return {}


class LintAnalyzer(Analyzer):
    """Lint changed files with the project's configuration.

    Severity 2 maps to BLOCKING and severity 1 to WARNING.
    """

    name = "eslint"

    def __init__(
        self,
        workspace: str | Path,
        *,
        eslint_command: Sequence[str] = ("npx", "--no-install", "eslint"),
        runner: CommandRunner = run_command,
    ) -> None:
        super().__init__(workspace)
        self._eslint_command = tuple(eslint_command)
        self._runner = runner

    async def run(self, diff_map: FrozenDiffMap) -> List[Finding]:
        ctx_logger = log_with_context(logger, analyzer=self.name)
        findings: List[Finding] = []
        files = sorted(diff_map)
        if not files:
            return findings

        mode = detect_config_mode(self.workspace)
        if mode is EslintConfigMode.NONE:
            ctx_logger.info("No ESLint configuration found; skipping project lint")
            return findings
        ctx_logger.info(f"ESLint config mode: {mode.value}; linting {len(files)} file(s)")

        engine = EslintEngine(
            self.workspace,
            command=self._eslint_command,
            env=mode_environment(mode),
            runner=self._runner,
        )
        try:
            results = await engine.lint_files(files)
        except CommandNotFoundError as exc:
            ctx_logger.info(f"ESLint unavailable ({exc}); skipping project lint")
            return findings
        except EslintEngineError as exc:
            ctx_logger.warning(f"ESLint failed (the configuration may be invalid): {exc}")
            return findings

        lintable = [result for result in results if not engine.is_path_ignored(result)]
        ignored_count = len(results) - len(lintable)
        if ignored_count:
            ctx_logger.debug(f"{ignored_count} file(s) excluded by ESLint ignore rules")
        if not lintable:
            ctx_logger.info("Nothing to lint: every changed file is ignored")
            return findings

        raw = [
            RawDiagnostic(
                file=result.file_path,
                line=message.line,
                col=message.column,
                rule_id=message.rule_id,
                severity=(
                    Severity.BLOCKING
                    if message.severity == ESLINT_ERROR_LEVEL
                    else Severity.WARNING
                ),
                message=message.message,
            )
            for result in lintable
            for message in result.messages
        ]
        findings = filter_to_diff(self, raw, diff_map)
        ctx_logger.info(f"Project lint complete: {len(findings)} finding(s)")
        return findings
