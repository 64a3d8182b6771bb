"""Command line interface for feature pack assembly and server provisioning."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Dict, Iterable, List, Tuple
import sys

from buildcore.console import StreamConsole
from buildcore.template import TemplateError

from .artifacts import (
    ArtifactResolver,
    ChainedArtifactResolver,
    MapArtifactResolver,
    PropertiesArtifactResolver,
    RemoteRepositoryResolver,
)
from .assembler import FeaturePackAssembler
from .config_loader import Settings, load_feature_pack_build, load_provisioning_description, load_settings
from .errors import AssemblyValidationError, ProvisioningError
from .provisioner import ServerProvisioner

_CONFIG_ERRORS = (ProvisioningError, TemplateError, ValueError, TypeError, OSError)


def _parse_properties(values: Iterable[str]) -> Dict[str, str]:
    properties: Dict[str, str] = {}
    for raw in values:
        name, separator, value = raw.partition("=")
        if not separator or not name.strip():
            raise ValueError(f"Invalid property definition '{raw}', expected NAME=VALUE")
        properties[name.strip()] = value
    return properties


def _make_console(args: Namespace, settings: Settings, *, dry_run: bool) -> StreamConsole:
    return StreamConsole(args.log_level or settings.log_level, dry_run=dry_run)


def _make_resolvers(
    args: Namespace, settings: Settings, properties: Dict[str, str], console: StreamConsole
) -> Tuple[ArtifactResolver, ArtifactResolver]:
    """Return the version resolver and the file resolver.

    Versions come from the project dependency set, then ``version.*``
    properties. Remote repositories are only asked for files.
    """

    local: List[ArtifactResolver] = []
    if args.dependencies:
        local.append(MapArtifactResolver.from_file(Path(args.dependencies)))
    if any(name.startswith(PropertiesArtifactResolver.PREFIX) for name in properties):
        local.append(PropertiesArtifactResolver(properties))

    versions = ChainedArtifactResolver(local)
    files: List[ArtifactResolver] = list(local)
    if not args.offline and settings.repositories:
        files.append(
            RemoteRepositoryResolver(
                settings.repositories,
                settings.local_repository,
                versions=versions,
                console=console,
            )
        )
    return versions, ChainedArtifactResolver(files)


def _add_common_arguments(parser: ArgumentParser) -> None:
    parser.add_argument("-d", "--descriptor", required=True, help="Descriptor file (.toml, .json, .yaml)")
    parser.add_argument("-t", "--target", required=True, help="Target directory")
    parser.add_argument("--dependencies", help="Pre-resolved project dependency set file")
    parser.add_argument(
        "-D",
        dest="properties",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Property used for ${NAME} substitution (repeatable)",
    )
    parser.add_argument("--settings", help="Settings file (defaults to $FEATUREPACK_SETTINGS)")
    parser.add_argument("--log-level", choices=list(StreamConsole.LEVELS), help="Override the configured log level")
    parser.add_argument("--offline", action="store_true", help="Do not consult remote repositories")


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="featurepack", description="Feature pack assembly and server provisioning")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Assemble a feature pack from a target directory")
    _add_common_arguments(build_parser)
    build_parser.add_argument("--archive", help="Archive the assembled pack to this file")
    build_parser.add_argument("-n", "--dry-run", action="store_true", help="Report without writing files")

    validate_parser = subparsers.add_parser("validate", help="Check a feature pack without writing anything")
    _add_common_arguments(validate_parser)

    provision_parser = subparsers.add_parser("provision", help="Provision a server from feature packs")
    _add_common_arguments(provision_parser)
    provision_parser.add_argument("-n", "--dry-run", action="store_true", help="Report without writing files")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)

    if args.command in ("build", "validate"):
        return _handle_build(args, validate_only=args.command == "validate")
    if args.command == "provision":
        return _handle_provision(args)
    raise ValueError(f"Unknown command: {args.command}")


def _handle_build(args: Namespace, *, validate_only: bool) -> int:
    try:
        settings = load_settings(Path(args.settings) if args.settings else None)
        properties = _parse_properties(args.properties)
        console = _make_console(args, settings, dry_run=validate_only or getattr(args, "dry_run", False))
        build = load_feature_pack_build(Path(args.descriptor), properties)
        versions, files = _make_resolvers(args, settings, properties, console)
        assembler = FeaturePackAssembler(
            console,
            hard_coded_artifacts=settings.hard_coded_artifacts,
            platform_modules=settings.platform_modules,
        )
        target = Path(args.target)
        result = assembler.build(build, target, versions, files)
        if not validate_only and args.archive:
            assembler.package(target, Path(args.archive))
    except AssemblyValidationError as exc:
        print(exc)
        return 1
    except _CONFIG_ERRORS as exc:
        print(f"Error: {exc}")
        return 2

    if validate_only:
        print("Validation successful")
    else:
        print(f"Feature pack assembled in {target} ({len(result.manifest)} versions, {len(result.warnings)} warnings)")
    return 0


def _handle_provision(args: Namespace) -> int:
    try:
        settings = load_settings(Path(args.settings) if args.settings else None)
        properties = _parse_properties(args.properties)
        console = _make_console(args, settings, dry_run=args.dry_run)
        description = load_provisioning_description(Path(args.descriptor), properties)
        versions, files = _make_resolvers(args, settings, properties, console)
        result = ServerProvisioner(console).build(description, Path(args.target), versions, files)
    except _CONFIG_ERRORS as exc:
        print(f"Error: {exc}")
        return 2

    print(f"Server provisioned in {result.server_dir} ({len(result.packs)} feature packs)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
