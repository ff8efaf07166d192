#!/usr/bin/env python3
"""
Lambda Bundle Build Script
Bundles Node.js Lambda entrypoints with esbuild and optionally zips them for deployment.
Configuration-driven (bundles.config.yaml) or ad-hoc from the command line.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from bundle_config import SUPPORTED_NODE_VERSIONS
from bundle_errors import BundlerError
from lambda_bundler import BuildRequest, build, externals_transformer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = 'bundles.config.yaml'


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration structure and required fields."""
    if not isinstance(config, dict) or 'bundles' not in config:
        raise ValueError("Configuration missing required field: 'bundles'")

    if not isinstance(config['bundles'], list):
        raise ValueError("Configuration field 'bundles' must be a list")

    outputs = {}
    for bundle in config['bundles']:
        if not isinstance(bundle, dict):
            raise ValueError(f"Bundle entries must be mappings, got {bundle!r}")
        for field in ('service', 'entrypoints'):
            if field not in bundle:
                raise ValueError(f"Bundle {bundle.get('service', 'unknown')} missing '{field}'")
        node_version = str(bundle.get('node_version', SUPPORTED_NODE_VERSIONS[0]))
        if node_version not in SUPPORTED_NODE_VERSIONS:
            raise ValueError(f"Unsupported node_version for {bundle['service']}: {node_version}")
        if not bundle.get('enabled', True):
            continue
        output = str(Path(bundle.get('output', '.build')).resolve())
        if output in outputs:
            raise ValueError(f"Bundles {outputs[output]} and {bundle['service']} share output {output}")
        outputs[output] = bundle['service']


def load_config(config_path: str) -> Dict[str, Any]:
    """Load the bundle configuration from YAML file."""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
        logger.info(f"Loaded configuration from {config_path}")
        validate_config(config)
        return config
    except FileNotFoundError:
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML configuration: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Configuration validation error: {e}")
        sys.exit(1)


def request_from_bundle(bundle: Dict[str, Any]) -> BuildRequest:
    externals = bundle.get('externals') or {}
    return BuildRequest(
        entrypoints=bundle['entrypoints'],
        service_name=bundle['service'],
        output_path=Path(bundle.get('output', '.build')),
        node_version=str(bundle['node_version']) if 'node_version' in bundle else None,
        config_transformer=externals_transformer(externals) if externals else None,
        zip=bool(bundle.get('zip', False)),
    )


def requests_from_config(config: Dict[str, Any]) -> List[BuildRequest]:
    disabled = [b['service'] for b in config.get('bundles', []) if not b.get('enabled', True)]
    if disabled:
        logger.warning(f"Skipped disabled bundles: {', '.join(disabled)}")
    return [request_from_bundle(b) for b in config.get('bundles', []) if b.get('enabled', True)]


def parse_externals(values: Optional[List[str]]) -> Dict[str, str]:
    externals = {}
    for value in values or []:
        name, _, reference = value.partition('=')
        externals[name] = reference or name
    return externals


async def run_builds(requests: List[BuildRequest]) -> int:
    """Run every build concurrently and print a summary; 1 when any build failed."""
    results = await asyncio.gather(*(build(request) for request in requests))

    logger.info("\n" + "=" * 60)
    logger.info("BUILD SUMMARY")
    logger.info("=" * 60)
    exit_code = 0
    for request, result in zip(requests, results):
        status = "Failed" if result.has_errors() else "Pass"
        logger.info(f"{request.service_name}: Build {status}, {len(result.warnings)} warning(s)")
        for output in result.outputs:
            logger.info(f"  Bundle: {output}")
        for archive in result.archives:
            logger.info(f"  Package: {archive}")
        if result.has_errors():
            exit_code = 1
    return exit_code


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Bundle Node.js Lambda functions with esbuild'
    )
    parser.add_argument('--config', help=f'Bundle configuration file (e.g. {DEFAULT_CONFIG})')
    parser.add_argument('--entrypoint', action='append',
                        help='Entrypoint file or directory, optionally path:output/name.js (repeatable)')
    parser.add_argument('--output', help='Output directory (defaults to the current directory)')
    parser.add_argument('--service-name', default='lambda-service', help='Service name for the build')
    parser.add_argument('--node-version', choices=SUPPORTED_NODE_VERSIONS, help='Target Node.js runtime version')
    parser.add_argument('--external', action='append', help='Module left as a runtime require, name[=reference]')
    parser.add_argument('--zip', action='store_true', help='Create a .zip package next to every bundle')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.config:
        requests = requests_from_config(load_config(args.config))
    elif args.entrypoint:
        externals = parse_externals(args.external)
        requests = [BuildRequest(
            entrypoints=args.entrypoint,
            service_name=args.service_name,
            output_path=Path(args.output) if args.output else None,
            node_version=args.node_version,
            config_transformer=externals_transformer(externals) if externals else None,
            zip=args.zip,
        )]
    else:
        logger.error("Either --config or --entrypoint is required")
        return 1

    if not requests:
        logger.info("No enabled bundles to build")
        return 0

    try:
        return asyncio.run(run_builds(requests))
    except (BundlerError, ValueError, KeyboardInterrupt) as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
