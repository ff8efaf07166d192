"""
Lambda bundle builder.
Resolves entrypoints, assembles one esbuild configuration, compiles every entry in a
single pass and optionally zips each bundle for deployment.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional

from bundle_archiver import archive_outputs
from bundle_compiler import BuildResult, CompilationEngine, compile_bundles
from bundle_config import BundleConfig, build_config
from bundle_entrypoints import Entrypoints, resolve_entrypoints
from bundle_errors import TransformerError

logger = logging.getLogger(__name__)

ConfigTransformer = Callable[[BundleConfig], BundleConfig]


@dataclass
class BuildRequest:
    entrypoints: Entrypoints
    service_name: str
    output_path: Optional[Path] = None
    node_version: Optional[str] = None
    mode: Optional[str] = None
    config_transformer: Optional[ConfigTransformer] = None
    zip: bool = False
    engine: Optional[CompilationEngine] = field(default=None, repr=False)


def externals_transformer(externals: Mapping[str, str]) -> ConfigTransformer:
    """Build a transformer that leaves the given modules as runtime requires."""
    def transform(config: BundleConfig) -> BundleConfig:
        config.merge_externals(externals)
        return config
    return transform


def apply_transformer(config: BundleConfig, transformer: Optional[ConfigTransformer]) -> BundleConfig:
    """Run the caller's transformer once; its return value is what gets compiled."""
    if transformer is None:
        return config
    try:
        transformed = transformer(config)
    except Exception as e:
        raise TransformerError(f"Config transformer failed: {e}") from e
    if not isinstance(transformed, BundleConfig):
        raise TransformerError(
            f"Config transformer must return a BundleConfig, got {type(transformed).__name__}"
        )
    return transformed


async def build(request: BuildRequest) -> BuildResult:
    """Build every entrypoint of ``request`` in one compilation pass.

    Compilation problems are reported through the returned result; bad requests,
    transformer failures and archive write failures raise.
    """
    cwd = Path.cwd()
    output_path = Path(request.output_path) if request.output_path else cwd
    if not output_path.is_absolute():
        output_path = cwd / output_path

    entries = await resolve_entrypoints(request.entrypoints, cwd=cwd)
    config = build_config(
        entries,
        output_path=output_path,
        service_name=request.service_name,
        node_version=request.node_version,
        mode=request.mode,
    )
    config = apply_transformer(config, request.config_transformer)

    engine_result = await compile_bundles(config, engine=request.engine)
    result = BuildResult(engine_result)

    if request.zip:
        # Archives only come from a batch without compilation errors.
        if result.has_errors():
            logger.warning(f"Skipping archives for {request.service_name}: compilation reported errors")
        else:
            result.archives = await archive_outputs(result.outputs)

    logger.info(f"Built {request.service_name}: {result!r}")
    return result
