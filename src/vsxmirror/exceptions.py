from __future__ import annotations


class VsxMirrorError(Exception):
    """Base class for all vsxmirror domain errors."""


class SourceUnreachableError(RuntimeError, VsxMirrorError):
    """Raised when a source repository cannot be parsed or cloned."""


class ManifestUnreadableError(ValueError, VsxMirrorError):
    """Raised when no usable extension manifest exists at a source location."""


class IdentityMismatchError(ManifestUnreadableError):
    """Raised when a manifest declares a different extension identity."""


class DownloadFailedError(RuntimeError, VsxMirrorError):
    """Raised when a release asset cannot be downloaded."""


class CatalogValidationError(ValueError, VsxMirrorError):
    """Raised when the extension catalog contains invalid entries."""


class ConfigurationError(ValueError, VsxMirrorError):
    """Raised when an environment override holds an invalid value."""


class RegistryInconsistencyError(RuntimeError, VsxMirrorError):
    """Raised when the open registry is ahead of the proprietary marketplace."""
