"""Command-line interface for oauthkit servers and configuration."""

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
        prog="oauthkit",
        description="oauthkit sign-in flow servers and configuration tools",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Initialize an oauthkit.toml configuration file",
    )
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Overwrite existing configuration file",
    )
    init_parser.add_argument(
        "--path",
        "-p",
        type=str,
        default="oauthkit.toml",
        help="Path for configuration file (default: oauthkit.toml)",
    )

    # demo-provider command
    demo_parser = subparsers.add_parser(
        "demo-provider",
        help="Run the demo OAuth2 identity provider",
    )
    demo_parser.add_argument("--host", type=str, default=None, help="Bind address (uses config default)")
    demo_parser.add_argument("--port", type=int, default=None, help="Port (uses config default)")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the sign-in flow routes",
    )
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address (uses config default)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (uses config default)")

    args = parser.parse_args(argv)

    if args.command == "config":
        return handle_config(args)
    if args.command == "init":
        return handle_init(args)
    if args.command == "demo-provider":
        return handle_demo_provider(args)
    if args.command == "serve":
        return handle_serve(args)
    parser.print_help()
    return 0


def handle_config(args: argparse.Namespace) -> int:
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
    from .config import OAuthKitSettings

    if args.sources:
        return show_config_sources()

    settings = OAuthKitSettings()

    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def handle_init(args: argparse.Namespace) -> int:
    """Write the current configuration to a new TOML file."""
    from .config import OAuthKitSettings

    path = Path(args.path)

    if path.exists() and not args.force:
        print(f"Error: {path} already exists. Use --force to overwrite.", file=sys.stderr)
        return 1

    content = "# oauthkit configuration\n\n" + OAuthKitSettings().to_toml()
    path.write_text(content, encoding="utf-8")
    print(f"Created {path}")
    return 0


def show_config_sources() -> int:
    """Print the configuration files that exist, lowest precedence first."""
    from .config import _find_config_files

    files = _find_config_files()
    if not files:
        print("No configuration files found (using defaults and environment).")
        return 0

    print("Configuration sources (lowest to highest precedence):")
    for path in files:
        print(f"  {path}")
    print("  environment variables (OAUTHKIT_*)")
    return 0


def handle_demo_provider(args: argparse.Namespace) -> int:
    """Run the demo identity provider with uvicorn."""
    import uvicorn

    from .config import get_settings
    from .demo_provider import create_demo_provider_app
    from .log import configure

    settings = get_settings()
    configure(settings.log.level, settings.log.format)

    host = args.host or settings.demo.host
    port = args.port if args.port is not None else settings.demo.port
    print(f"Demo OAuth provider running at http://{host}:{port}{settings.demo.prefix}")

    uvicorn.run(
        create_demo_provider_app(settings.demo),
        host=host,
        port=port,
        log_level=settings.log.level.lower(),
    )
    return 0


def handle_serve(args: argparse.Namespace) -> int:
    """Run the sign-in flow routes with uvicorn."""
    import uvicorn

    from .config import get_settings
    from .routes import create_app

    settings = get_settings()
    host = args.host or settings.server.host
    port = args.port if args.port is not None else settings.server.port

    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        access_log=settings.server.access_log,
        log_level=settings.log.level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
