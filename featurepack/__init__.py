"""Feature pack assembly and multi-pack server provisioning."""

from .artifacts import (
    ArtifactCoordinate,
    ArtifactResolver,
    ChainedArtifactResolver,
    MapArtifactResolver,
    PropertiesArtifactResolver,
    RemoteRepositoryResolver,
    ResolvedArtifact,
)
from .assembler import AssemblyResult, FeaturePackAssembler, VersionManifest
from .config_loader import (
    CopyArtifact,
    FeaturePackBuild,
    FeaturePackEntry,
    FilePermission,
    ResourceSpec,
    ServerProvisioningDescription,
    Settings,
)
from .copier import CopyReport, FileTreeCopier
from .errors import (
    AssemblyValidationError,
    CopyError,
    DescriptorError,
    PackFormatError,
    ProvisioningError,
    UnresolvedArtifactError,
)
from .modules import ArtifactReference, ModuleDependency, ModuleDescriptor, ModuleDocument, ModuleIdentifier
from .packs import Pack, PackDescription, PackLoader
from .provisioner import ProvisioningResult, ServerProvisioner
from .validator import ModuleGraphValidator, ValidationResult

__all__ = [
    "ArtifactCoordinate",
    "ArtifactResolver",
    "ChainedArtifactResolver",
    "MapArtifactResolver",
    "PropertiesArtifactResolver",
    "RemoteRepositoryResolver",
    "ResolvedArtifact",
    "AssemblyResult",
    "FeaturePackAssembler",
    "VersionManifest",
    "CopyArtifact",
    "FeaturePackBuild",
    "FeaturePackEntry",
    "FilePermission",
    "ResourceSpec",
    "ServerProvisioningDescription",
    "Settings",
    "CopyReport",
    "FileTreeCopier",
    "AssemblyValidationError",
    "CopyError",
    "DescriptorError",
    "PackFormatError",
    "ProvisioningError",
    "UnresolvedArtifactError",
    "ArtifactReference",
    "ModuleDependency",
    "ModuleDescriptor",
    "ModuleDocument",
    "ModuleIdentifier",
    "Pack",
    "PackDescription",
    "PackLoader",
    "ProvisioningResult",
    "ServerProvisioner",
    "ModuleGraphValidator",
    "ValidationResult",
]
