"""envcomposer CLI: compose and enter development environments.

Commands:
    develop: Compose a shell variant and drop into it (or run a command).
    print-env: Print the variables activation would set.
    check: Validate the descriptor, compose, and print the manifest.
    shells: List declared platforms and variants.
    prefetch: Print the content hash of each pinned toolchain.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any

from .activate import activate, render_exports
from .api import compose_from_config, load_config_descriptor, prefetch_from_config
from .config import REGISTRY_KINDS, ComposerConfig, load_config
from .descriptor import DEFAULT_VARIANT
from .errors import DescriptorValidationError, EnvComposerError
from .hashing import canonical_json_dumps

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="envcomposer", description="Reproducible development shell composer")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--descriptor", type=Path, help="Descriptor file (default: devenv.yaml)")
    parser.add_argument("--config", type=Path, help="Config file (default: .envcomposer.yaml)")
    parser.add_argument("--platform", type=str, help="Target platform identifier (default: this host)")
    parser.add_argument("--registry", choices=REGISTRY_KINDS, help="Capability registry to resolve against")
    parser.add_argument("--catalog", type=Path, help="Capability catalog for --registry catalog")
    parser.add_argument("--cache-dir", type=Path, help="Read-only artifact cache root")
    parser.add_argument("--offline", action="store_true", default=None, help="Never fetch from the network")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    develop = subparsers.add_parser("develop", help="Enter the composed environment")
    develop.add_argument("--shell", default=DEFAULT_VARIANT, help="Shell variant to compose")
    develop.add_argument("-c", "--command", dest="run", nargs=argparse.REMAINDER, help="Run a command instead of a shell")

    print_env = subparsers.add_parser("print-env", help="Print variables set on activation")
    print_env.add_argument("--shell", default=DEFAULT_VARIANT)
    print_env.add_argument("--json", action="store_true", help="Emit canonical JSON")

    check = subparsers.add_parser("check", help="Validate and compose without activating")
    check.add_argument("--shell", default=DEFAULT_VARIANT)
    check.add_argument("--strict", action="store_true", help="Also validate against the JSON Schema")
    check.add_argument("--json", action="store_true", help="Emit canonical JSON")

    subparsers.add_parser("shells", help="List declared platforms and variants")

    prefetch = subparsers.add_parser("prefetch", help="Print content hashes of pinned toolchains")
    prefetch.add_argument("--shell", default=DEFAULT_VARIANT)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.WARNING
    if args.verbose >= 1:
        log_level = logging.INFO
    if args.verbose >= 2:
        log_level = logging.DEBUG
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")

    try:
        config = load_config(config_path=args.config, overrides=_config_overrides(args))
        if args.command == "develop":
            return _cmd_develop(args, config)
        if args.command == "print-env":
            return _cmd_print_env(args, config)
        if args.command == "check":
            return _cmd_check(args, config)
        if args.command == "shells":
            return _cmd_shells(config)
        if args.command == "prefetch":
            return _cmd_prefetch(args, config)
    except DescriptorValidationError as exc:
        sys.stderr.write("Invalid descriptor:\n")
        for error in exc.errors:
            sys.stderr.write(f"  {error}\n")
        return 1
    except EnvComposerError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


def _config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "descriptor": args.descriptor,
        "platform": args.platform,
        "registry": args.registry,
        "catalog": args.catalog,
        "cache_dir": args.cache_dir,
        "offline": args.offline,
    }


def _cmd_develop(args: argparse.Namespace, config: ComposerConfig) -> int:
    environment = compose_from_config(config, variant=args.shell)
    return activate(environment, cwd=Path.cwd(), command=args.run or None)


def _cmd_print_env(args: argparse.Namespace, config: ComposerConfig) -> int:
    environment = compose_from_config(config, variant=args.shell)
    delta = environment.delta(os.environ, Path.cwd())
    if args.json:
        sys.stdout.write(canonical_json_dumps(delta) + "\n")
    else:
        sys.stdout.write(render_exports(delta))
    return 0


def _cmd_check(args: argparse.Namespace, config: ComposerConfig) -> int:
    environment = compose_from_config(config, variant=args.shell, strict=args.strict)
    payload = {"fingerprint": environment.fingerprint(), "environment": environment.to_manifest_dict()}
    if args.json:
        sys.stdout.write(canonical_json_dumps(payload) + "\n")
        return 0

    lines = [
        f"Environment {environment.platform}/{environment.variant}: OK",
        f"Fingerprint: {payload['fingerprint']}",
        f"Capabilities: {len(environment.capabilities)}",
    ]
    for capability in environment.capabilities:
        lines.append(f"  - {capability.name} ({capability.bin_dir})")
    for toolchain in environment.toolchains:
        lines.append(f"Pinned toolchain: {toolchain.file} {toolchain.channel} {toolchain.digest}")
    for key, value in sorted(environment.variables.items()):
        lines.append(f"{key}={value}")
    if environment.path_prefix is not None:
        lines.append(f"Path prefix: {environment.path_prefix.directory}")
    sys.stdout.write("\n".join(lines) + "\n")
    return 0


def _cmd_shells(config: ComposerConfig) -> int:
    descriptor = load_config_descriptor(config)
    if descriptor.description:
        sys.stdout.write(f"{descriptor.description}\n")
    for platform in descriptor.platforms():
        for variant in descriptor.variants(platform):
            sys.stdout.write(f"{platform} {variant}\n")
    return 0


def _cmd_prefetch(args: argparse.Namespace, config: ComposerConfig) -> int:
    hashes = prefetch_from_config(config, variant=args.shell)
    for file, sri in sorted(hashes.items()):
        sys.stdout.write(f"{file} {sri}\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
