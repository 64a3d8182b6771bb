"""Error taxonomy for feature pack assembly and provisioning."""
from __future__ import annotations

from typing import Iterable, List


class ProvisioningError(RuntimeError):
    """Base class for failures raised by the assembly pipeline."""


class UnresolvedArtifactError(ProvisioningError):
    """Raised when a required artifact has no version or no file."""

    def __init__(self, reference: str, *, reason: str | None = None) -> None:
        message = f"Could not resolve artifact {reference}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.reference = reference


class DescriptorError(ProvisioningError):
    """Raised when a module descriptor cannot be read or parsed."""


class PackFormatError(ProvisioningError):
    """Raised when a dependency pack does not have the expected layout."""


class CopyError(ProvisioningError):
    """Raised when materialising a file or directory fails."""


class AssemblyValidationError(ProvisioningError):
    """Aggregate failure carrying every validation error of one pass."""

    HEADER = "Some errors were encountered creating the feature pack"

    def __init__(self, errors: Iterable[str], *, header: str | None = None) -> None:
        self.errors: List[str] = list(errors)
        self.header = header or self.HEADER
        super().__init__("\n".join([self.header, *self.errors]))


__all__ = [
    "AssemblyValidationError",
    "CopyError",
    "DescriptorError",
    "PackFormatError",
    "ProvisioningError",
    "UnresolvedArtifactError",
]
