"""
Compilation configuration for Lambda bundle builds.
One configuration covers every entry of a build; the mode comes from the BUNDLE_MODE toggle.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from bundle_entrypoints import EntryDescriptor
from bundle_errors import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_NODE_VERSIONS = ('6.10', '8.10')
DEFAULT_NODE_VERSION = SUPPORTED_NODE_VERSIONS[0]

MODE_ENV_VAR = 'BUNDLE_MODE'
PRODUCTION = 'production'
DEVELOPMENT = 'development'

SCRIPT_EXTENSIONS = ('.js', '.mjs')
TYPED_EXTENSIONS = ('.ts', '.tsx')
RESOLVE_EXTENSIONS = ('.mjs', '.js', '.ts', '.tsx', '.json')


def mode_from_environment() -> str:
    """Read the build mode toggle; anything but 'development' means production."""
    if os.environ.get(MODE_ENV_VAR, '').strip().lower() == DEVELOPMENT:
        return DEVELOPMENT
    return PRODUCTION


@dataclass
class LoaderRule:
    """How one source dialect is transpiled."""
    loader: str
    extensions: Sequence[str]
    options: Dict[str, Any] = field(default_factory=dict)
    source_map: bool = False

    def matches(self, path: Path) -> bool:
        return path.suffix in self.extensions


@dataclass
class BundleConfig:
    service_name: str
    output_path: Path
    entries: Dict[str, Path]
    mode: str
    minify: bool
    node_version: str
    rules: List[LoaderRule]
    externals: Dict[str, str] = field(default_factory=dict)
    resolve_extensions: List[str] = field(default_factory=lambda: list(RESOLVE_EXTENSIONS))
    platform: str = 'node'
    format: str = 'cjs'

    @property
    def target(self) -> str:
        return f"node{self.node_version}"

    def add_external(self, module: str, reference: Optional[str] = None) -> None:
        """Leave ``module`` as a runtime ``require`` of ``reference`` instead of inlining it."""
        self.externals[module] = reference or module

    def merge_externals(self, mapping: Mapping[str, str]) -> None:
        """Merge externals: new names are appended, existing names keep their position but take the new reference."""
        for module, reference in mapping.items():
            self.add_external(module, reference)

    def rule_for(self, source: Path) -> Optional[LoaderRule]:
        for rule in self.rules:
            if rule.matches(source):
                return rule
        return None

    def find_rule(self, loader: str) -> Optional[LoaderRule]:
        for rule in self.rules:
            if rule.loader == loader:
                return rule
        return None

    def source_map_entries(self) -> List[str]:
        """Output names whose source dialect produces a source map."""
        names = []
        for output_name, source in self.entries.items():
            rule = self.rule_for(source)
            if rule is not None and rule.source_map:
                names.append(output_name)
        return names


def transpile_rules(node_version: str) -> List[LoaderRule]:
    targets = {'node': node_version}
    return [
        LoaderRule(loader='js', extensions=SCRIPT_EXTENSIONS, options={'targets': dict(targets)}),
        LoaderRule(loader='ts', extensions=TYPED_EXTENSIONS, options={'targets': dict(targets)}, source_map=True),
    ]


def build_config(entries: List[EntryDescriptor], output_path: Path, service_name: str,
                 node_version: Optional[str] = None, mode: Optional[str] = None) -> BundleConfig:
    """Assemble the single compilation configuration for every resolved entry."""
    node_version = node_version or DEFAULT_NODE_VERSION
    if node_version not in SUPPORTED_NODE_VERSIONS:
        raise ConfigurationError(
            f"Unsupported Node version {node_version} (supported: {', '.join(SUPPORTED_NODE_VERSIONS)})"
        )
    mode = mode or mode_from_environment()

    config = BundleConfig(
        service_name=service_name,
        output_path=Path(output_path),
        entries={entry.output_name: entry.source_path for entry in entries},
        mode=mode,
        minify=mode != DEVELOPMENT,
        node_version=node_version,
        rules=transpile_rules(node_version),
    )
    for output_name, source in config.entries.items():
        if config.rule_for(source) is None:
            raise ConfigurationError(f"No loader for {source} (output {output_name})")

    logger.debug(f"Built config for {service_name}: target={config.target}, mode={mode}, entries={len(config.entries)}")
    return config
