"""
Compilation of Lambda bundles.
Drives one batched esbuild pass per build and aggregates its diagnostics.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from bundle_config import BundleConfig
from bundle_errors import CompilationEngineError

logger = logging.getLogger(__name__)

ESBUILD_BINARY_ENV_VAR = 'ESBUILD_BINARY'
ESBUILD_TIMEOUT_ENV_VAR = 'ESBUILD_TIMEOUT'
DEFAULT_TIMEOUT = 600
BUILD_MODULE = '<build>'

_MESSAGE_RE = re.compile(r'\[(ERROR|WARNING)\]\s+(.*)$')
_LOCATION_RE = re.compile(r'^\s+(\S.*?):(\d+):(\d+):\s*$')


@dataclass
class Diagnostic:
    message: str
    module: str = BUILD_MODULE
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        if self.line is None:
            return f"{self.module}: {self.message}"
        return f"{self.module}:{self.line}:{self.column}: {self.message}"


@dataclass
class ModuleReport:
    name: str
    errors: List[Diagnostic] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)


@dataclass
class EngineResult:
    """Raw outcome of one engine pass, grouped per module."""
    modules: List[ModuleReport] = field(default_factory=list)
    outputs: List[Path] = field(default_factory=list)

    def report_for(self, module: str) -> ModuleReport:
        for report in self.modules:
            if report.name == module:
                return report
        report = ModuleReport(name=module)
        self.modules.append(report)
        return report


class CompilationEngine(Protocol):
    async def compile(self, config: BundleConfig) -> EngineResult:
        ...


def parse_diagnostics(report: str, result: EngineResult) -> None:
    """Collect ``[ERROR]`` and ``[WARNING]`` messages from an esbuild log into ``result``."""
    pending: Optional[Diagnostic] = None
    kind = None
    for line in report.splitlines():
        match = _MESSAGE_RE.search(line)
        if match:
            if pending is not None:
                _record(result, kind, pending)
            kind, pending = match.group(1), Diagnostic(message=match.group(2).strip())
            continue
        location = _LOCATION_RE.match(line)
        if location and pending is not None and pending.line is None:
            pending.module = location.group(1)
            pending.line = int(location.group(2))
            pending.column = int(location.group(3))
    if pending is not None:
        _record(result, kind, pending)


def _record(result: EngineResult, kind: str, diagnostic: Diagnostic) -> None:
    report = result.report_for(diagnostic.module)
    if kind == 'ERROR':
        report.errors.append(diagnostic)
    else:
        report.warnings.append(diagnostic)


class EsbuildEngine:
    """Runs the esbuild executable once for every entry of a configuration."""

    def __init__(self, binary: Optional[str] = None, timeout: Optional[int] = None):
        self.binary = binary or os.environ.get(ESBUILD_BINARY_ENV_VAR, 'esbuild')
        self.timeout = timeout or int(os.environ.get(ESBUILD_TIMEOUT_ENV_VAR, DEFAULT_TIMEOUT))

    def command(self, config: BundleConfig) -> List[str]:
        cmd = [
            self.binary,
            '--bundle',
            f'--platform={config.platform}',
            f'--format={config.format}',
            f'--target={config.target}',
            f'--outdir={config.output_path}',
            f'--resolve-extensions={",".join(config.resolve_extensions)}',
            '--log-level=warning',
            '--log-limit=0',
            '--color=false',
        ]
        if config.minify:
            cmd.append('--minify')
        if config.source_map_entries():
            cmd.append('--sourcemap=external')
        for module, reference in config.externals.items():
            if reference != module:
                cmd.append(f'--alias:{module}={reference}')
            cmd.append(f'--external:{reference}')
        for output_name, source in config.entries.items():
            cmd.append(f'{output_name[:-len(".js")]}={source}')
        return cmd

    async def _run(self, cmd: List[str]) -> Tuple[int, str]:
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CompilationEngineError(f"Compilation engine not found: {self.binary}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise CompilationEngineError(f"Compilation timed out after {self.timeout} seconds") from e
        return process.returncode, stderr.decode('utf-8', errors='replace')

    def _drop_untyped_source_maps(self, config: BundleConfig) -> None:
        keep = set(config.source_map_entries())
        for output_name in config.entries:
            if output_name in keep:
                continue
            source_map = config.output_path / f"{output_name}.map"
            if source_map.exists():
                source_map.unlink()

    async def compile(self, config: BundleConfig) -> EngineResult:
        config.output_path.mkdir(parents=True, exist_ok=True)
        returncode, report = await self._run(self.command(config))

        result = EngineResult()
        parse_diagnostics(report, result)
        if returncode != 0 and not any(module.errors for module in result.modules):
            result.report_for(BUILD_MODULE).errors.append(
                Diagnostic(message=f"esbuild exited with code {returncode}: {report.strip()}")
            )

        if config.source_map_entries():
            self._drop_untyped_source_maps(config)
        if not any(module.errors for module in result.modules):
            result.outputs = [config.output_path / name for name in config.entries
                              if (config.output_path / name).is_file()]
        return result


class BuildResult:
    """Outcome of one build: every diagnostic of the batched pass plus the files it produced."""

    def __init__(self, engine_result: EngineResult, archives: Optional[List[Path]] = None):
        self.engine_result = engine_result
        self.archives = archives or []

    @property
    def outputs(self) -> List[Path]:
        return list(self.engine_result.outputs)

    @property
    def errors(self) -> List[Diagnostic]:
        return [error for module in self.engine_result.modules for error in module.errors]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [warning for module in self.engine_result.modules for warning in module.warnings]

    def has_errors(self) -> bool:
        return any(module.errors for module in self.engine_result.modules)

    def has_warnings(self) -> bool:
        return any(module.warnings for module in self.engine_result.modules)

    def __repr__(self) -> str:
        return (f"BuildResult(outputs={len(self.outputs)}, errors={len(self.errors)}, "
                f"warnings={len(self.warnings)}, archives={len(self.archives)})")


async def compile_bundles(config: BundleConfig, engine: Optional[CompilationEngine] = None) -> EngineResult:
    """Invoke the engine exactly once for the whole configuration."""
    engine = engine or EsbuildEngine()
    logger.info(f"Compiling {len(config.entries)} bundle(s) for {config.service_name} targeting {config.target}")
    result = await engine.compile(config)
    for module in result.modules:
        for error in module.errors:
            logger.error(f"  {error}")
        for warning in module.warnings:
            logger.warning(f"  {warning}")
    return result
