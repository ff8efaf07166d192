"""Zip archives for produced Lambda bundles."""

import asyncio
import logging
import zipfile
from pathlib import Path
from typing import Iterable, List

from bundle_errors import ArchivingError

logger = logging.getLogger(__name__)

ASSET_SUFFIXES = ('.map',)


def archive_path(output_file: Path) -> Path:
    return output_file.with_name(output_file.name + '.zip')


def _write_archive(output_file: Path) -> Path:
    zip_path = archive_path(output_file)
    members = [output_file]
    for suffix in ASSET_SUFFIXES:
        asset = output_file.with_name(output_file.name + suffix)
        if asset.is_file():
            members.append(asset)

    with zipfile.ZipFile(zip_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for member in members:
            zipf.write(member, member.name)
    logger.info(f"Created package {zip_path} ({zip_path.stat().st_size:,} bytes)")
    return zip_path


async def archive_outputs(output_files: Iterable[Path]) -> List[Path]:
    """Write ``<output>.zip`` next to every produced bundle, one archive per bundle."""
    archives = []
    for output_file in output_files:
        try:
            archives.append(await asyncio.to_thread(_write_archive, output_file))
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise ArchivingError(f"Failed to archive {output_file}: {e}") from e
    return archives
