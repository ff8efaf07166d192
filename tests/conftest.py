"""Shared fixtures for the bundle builder tests."""

import shutil
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from bundle_compiler import Diagnostic, EngineResult

FIXTURES = Path(__file__).parent / 'fixtures'

requires_esbuild = pytest.mark.skipif(shutil.which('esbuild') is None, reason='esbuild executable not on PATH')


class RecordingEngine:
    """Stand-in compilation engine that records its calls and writes placeholder bundles."""

    def __init__(self, errors=None, warnings=None):
        self.calls = []
        self.errors = errors or []
        self.warnings = warnings or []

    async def compile(self, config):
        self.calls.append(config)
        result = EngineResult()
        for output_name, source in config.entries.items():
            output = config.output_path / output_name
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(f"// bundled from {source.name}\n")
            if output_name in config.source_map_entries():
                output.with_name(output.name + '.map').write_text('{"version":3}')
            result.outputs.append(output)
        for module, message in self.errors:
            result.report_for(module).errors.append(Diagnostic(message=message, module=module))
        for module, message in self.warnings:
            result.report_for(module).warnings.append(Diagnostic(message=message, module=module))
        return result


@pytest.fixture
def fixtures_dir():
    return FIXTURES


@pytest.fixture
def engine():
    return RecordingEngine()


@pytest.fixture
def build_dir(tmp_path):
    """Per-test output directory, removed by pytest's tmp_path cleanup."""
    directory = tmp_path / 'build'
    directory.mkdir()
    return directory


@pytest.fixture(autouse=True)
def clear_mode(monkeypatch):
    monkeypatch.delenv('BUNDLE_MODE', raising=False)
