"""
Entrypoint resolution for Lambda bundle builds.
Turns a single path, a list of paths or a directory into ordered entry descriptors.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple, Union

from bundle_errors import ConfigurationError

logger = logging.getLogger(__name__)

OUTPUT_EXTENSION = '.js'
INDEX_NAMES = ('index.js', 'index.ts')
SOURCE_EXTENSIONS = ('.js', '.mjs', '.ts', '.tsx')

Entrypoints = Union[str, os.PathLike, Sequence[Union[str, os.PathLike]]]


@dataclass(frozen=True)
class EntryDescriptor:
    source_path: Path
    output_name: str


def default_output_name(source_path: Path) -> str:
    """Output name for a source file without an explicit override."""
    return source_path.stem + OUTPUT_EXTENSION


def split_override(spec: str, cwd: Optional[Path] = None) -> Tuple[str, Optional[str]]:
    """Split a ``path:customName`` entrypoint into its path and custom output name."""
    if os.path.exists(os.path.join(cwd, spec) if cwd else spec):
        return spec, None
    path, sep, name = spec.rpartition(':')
    if not sep or not path or not name:
        return spec, None
    return path, name


def validate_output_name(name: str, source: str) -> str:
    """Normalize an output name and reject names that escape the output directory."""
    normalized = name.replace('\\', '/')
    output = PurePosixPath(normalized)
    if output.is_absolute() or '..' in output.parts:
        raise ConfigurationError(f"Output name {name!r} for {source} must stay inside the output path")
    if not output.name.endswith(OUTPUT_EXTENSION):
        raise ConfigurationError(f"Output name {name!r} for {source} must end with {OUTPUT_EXTENSION}")
    return str(output)


async def probe(path: Path) -> os.stat_result:
    """Stat a candidate and make sure it is a readable file."""
    stats = await asyncio.to_thread(os.stat, path)
    if not path.is_file():
        raise IsADirectoryError(f"Not a file: {path}")
    if not os.access(path, os.R_OK):
        raise PermissionError(f"Not readable: {path}")
    return stats


def _candidate_for(child: Path) -> Tuple[Path, str]:
    if child.is_dir():
        for index_name in INDEX_NAMES:
            index = child / index_name
            if index.exists():
                return index, child.name + OUTPUT_EXTENSION
        return child / INDEX_NAMES[0], child.name + OUTPUT_EXTENSION
    return child, default_output_name(child)


async def expand_directory(directory: Path) -> AsyncIterator[EntryDescriptor]:
    """Yield one descriptor per readable candidate directly inside ``directory``.

    Files are candidates themselves, subdirectories through their ``index`` file.
    Candidates whose probe fails are dropped and the remaining ones still resolve.
    """
    try:
        children = sorted(directory.iterdir(), key=lambda child: child.name)
    except OSError as e:
        raise ConfigurationError(f"Cannot list entrypoint directory {directory}: {e}") from e

    for child in children:
        if child.name.startswith('.'):
            continue
        try:
            candidate, output_name = _candidate_for(child)
            if candidate.suffix not in SOURCE_EXTENSIONS:
                logger.debug(f"Skipping non-source file {candidate}")
                continue
            await probe(candidate)
        except OSError as e:
            logger.debug(f"Skipping entrypoint candidate {child}: {e}")
            continue
        yield EntryDescriptor(source_path=candidate, output_name=output_name)


async def _resolve_one(spec: Union[str, os.PathLike], cwd: Path) -> List[EntryDescriptor]:
    path_text, override = split_override(os.fspath(spec), cwd)
    source = Path(os.path.abspath(cwd / path_text))

    if source.is_dir():
        if override:
            raise ConfigurationError(f"A directory entrypoint cannot take a custom name: {spec}")
        return [entry async for entry in expand_directory(source)]

    if not source.is_file():
        raise ConfigurationError(f"Entrypoint not found: {source}")

    name = override if override else default_output_name(source)
    return [EntryDescriptor(source_path=source, output_name=validate_output_name(name, str(source)))]


async def resolve_entrypoints(entrypoints: Entrypoints, cwd: Optional[Path] = None) -> List[EntryDescriptor]:
    """Resolve the entrypoint specification of a build request into ordered descriptors."""
    cwd = cwd or Path.cwd()
    if isinstance(entrypoints, (str, os.PathLike)):
        specs = [entrypoints]
    else:
        specs = list(entrypoints)
    if not specs:
        raise ConfigurationError("No entrypoints given")

    resolved: List[EntryDescriptor] = []
    for spec in specs:
        resolved.extend(await _resolve_one(spec, cwd))
    if not resolved:
        raise ConfigurationError(f"No entrypoints resolved from {', '.join(os.fspath(spec) for spec in specs)}")

    seen: Dict[str, Path] = {}
    for entry in resolved:
        if entry.output_name in seen:
            raise ConfigurationError(
                f"Duplicate output name {entry.output_name}: "
                f"{seen[entry.output_name]} and {entry.source_path}"
            )
        seen[entry.output_name] = entry.source_path

    logger.info(f"Resolved {len(resolved)} entrypoint(s)")
    return resolved
