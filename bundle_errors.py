"""Exceptions raised while building Lambda bundles."""


class BundlerError(Exception):
    """Base class for fatal bundle build failures."""


class ConfigurationError(BundlerError):
    """The build request is malformed (bad entrypoint, duplicate output name, unsupported version)."""


class TransformerError(BundlerError):
    """The caller-supplied configuration transformer failed."""


class CompilationEngineError(BundlerError):
    """The compilation engine could not be run at all."""


class ArchivingError(BundlerError):
    """A zip archive could not be written after compilation."""
