"""Command-line interface for backup-oauth configuration checks."""

from __future__ import annotations

import argparse
import sys

from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : list[str], optional
        Arguments to parse instead of ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="backup-oauth",
        description="backup-oauth configuration and maintenance tools",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "providers",
        help="Show which OAuth providers are configured",
    )

    key_parser = subparsers.add_parser(
        "generate-key",
        help="Generate a random ENCRYPTION_KEY value",
    )
    key_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Append ENCRYPTION_KEY=<key> to this file instead of printing the key",
    )

    subparsers.add_parser(
        "config",
        help="Show the effective configuration with secrets redacted",
    )

    subparsers.add_parser(
        "check",
        help="Fail if the application could not start with this configuration",
    )

    args = parser.parse_args(argv)

    if args.debug:
        from .log import enable_debug

        enable_debug()

    if args.command == "providers":
        return handle_providers(args)
    if args.command == "generate-key":
        return handle_generate_key(args)
    if args.command == "config":
        return handle_config(args)
    if args.command == "check":
        return handle_check(args)
    parser.print_help()
    return 0


def handle_providers(args: argparse.Namespace) -> int:  # noqa: ARG001
    """Handle the providers command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code (always 0; missing providers are not an error).
    """
    from .auth.providers import ProviderConfigRegistry
    from .config import get_settings

    registry = ProviderConfigRegistry.from_settings(get_settings())
    print(f"{'provider':<10} {'status':<16} missing")
    for name, missing in registry.validate_all():
        status = "configured" if not missing else "not configured"
        print(f"{name:<10} {status:<16} {', '.join(missing) or '-'}")
    return 0


def handle_generate_key(args: argparse.Namespace) -> int:
    """Handle the generate-key command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .auth.crypto import EncryptionEngine

    key = EncryptionEngine.generate_key()
    if args.output:
        path = Path(args.output)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(f"ENCRYPTION_KEY={key}\n")
        print(f"ENCRYPTION_KEY written to {path}")
    else:
        print(key)
    return 0


def handle_config(args: argparse.Namespace) -> int:  # noqa: ARG001
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import get_settings

    print(get_settings().show())
    return 0


def handle_check(args: argparse.Namespace) -> int:  # noqa: ARG001
    """Handle the check command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code: 1 if the encryption key is unusable, else 0.
    """
    from .auth.crypto import EncryptionEngine
    from .auth.providers import ProviderConfigRegistry
    from .config import get_settings
    from .exceptions import ConfigurationError

    settings = get_settings()
    try:
        EncryptionEngine.from_settings(settings)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    available = ProviderConfigRegistry.from_settings(settings).available()
    if not available:
        print("Warning: no OAuth providers are configured", file=sys.stderr)
    print(f"OK (environment={settings.environment}, providers={', '.join(available) or 'none'})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
