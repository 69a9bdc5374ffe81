"""Command-line interface for inboxview."""

import argparse
import getpass
import imaplib
import logging
import sys
from pathlib import Path
from typing import Optional

from inboxview import __version__
from inboxview.config import (
    DEFAULT_CONFIG_FILENAME,
    Settings,
    load_config,
    load_settings,
    save_connection,
    validate_config,
)
from inboxview.errors import BackendError, ConfigurationError
from inboxview.imap.auth import close_quietly, connect_transport, negotiate
from inboxview.keychain import KeychainStorage

SCRIPT_DIR = Path(__file__).parent.absolute()


def _prompt(label: str, default: Optional[str] = None) -> str:
    suffix = f" [{default}]" if default else ""
    return input(f"{label}{suffix}: ").strip() or (default or "")


def cmd_setup(keychain: KeychainStorage, config: dict, config_path: Optional[Path]) -> None:
    """Store the shared mailbox login: password in the keychain, the rest in config.yaml."""
    print("\n" + "=" * 50)
    print("inboxview - Setup")
    print("=" * 50 + "\n")

    imap = config.get("imap") or {}
    host = _prompt("IMAP server", imap.get("host") or "localhost")
    port_text = _prompt("IMAP port", str(imap.get("port") or 993))
    try:
        port = int(port_text)
    except ValueError:
        print(f"❌ Error: Invalid port: {port_text}")
        sys.exit(1)
    use_tls = _prompt("Use TLS (yes/no)", "yes").lower() not in ("n", "no", "false", "0")

    username = _prompt("Mailbox username", imap.get("username"))
    if not username:
        print("❌ Error: Username required")
        sys.exit(1)

    mail_domain = _prompt("Mail domain", config.get("mail_domain") or "example.com")

    if keychain.has_imap_password(username):
        replace = _prompt("A password is already stored. Replace it? (yes/no)", "no")
        store = replace.lower() in ("y", "yes")
    else:
        store = True
    if store:
        password = getpass.getpass("Mailbox password: ")
        if not password:
            print("❌ Error: Password required")
            sys.exit(1)
        keychain.save_imap_password(username, password)
        print(f"✓ Password for {username} saved to keychain")

    config_path = Path(config_path or Path.cwd() / DEFAULT_CONFIG_FILENAME)
    save_connection(config_path, host, port, username, use_tls=use_tls, mail_domain=mail_domain)
    print(f"✓ Connection settings written to {config_path}")
    print("\nRun 'inboxview check' to test the connection.")


def cmd_check(settings: Settings) -> None:
    """Open one session and report how it authenticated."""
    conn_config = settings.connection
    print(f"\nConnecting to {conn_config.host}:{conn_config.port} as {settings.credentials.username}...")

    try:
        conn = connect_transport(conn_config)
    except OSError as e:
        print(f"❌ Could not connect: {e}")
        sys.exit(1)

    try:
        mechanism = negotiate(conn, settings.credentials, conn_config.folder)
        print(f"✓ Authenticated via {mechanism}")
        status, data = conn.uid("search", None, "ALL")
        count = len(data[0].split()) if status == "OK" and data and data[0] else 0
        print(f"✓ Folder {conn_config.folder} holds {count} messages")
    except (BackendError, imaplib.IMAP4.error) as e:
        print(f"❌ {e}")
        sys.exit(1)
    finally:
        close_quietly(conn)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="inboxview",
        description="inboxview - Disposable inboxes on top of one catch-all mailbox.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Version: {__version__}

Examples:
  %(prog)s setup                   Store the mailbox login
  %(prog)s check                   Test the IMAP connection
  %(prog)s serve --port 8080       Start the web interface
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: ./config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed progress output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "setup",
        help="Store the mailbox login (password goes to the system keychain)",
    )

    subparsers.add_parser(
        "check",
        help="Open one IMAP session and report the result",
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the web interface",
    )
    serve_parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to listen on (default: 8080)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    # Also accepted after the subcommand
    serve_parser.add_argument("--config", type=Path, default=argparse.SUPPRESS, help=argparse.SUPPRESS)
    serve_parser.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Log every request with its timing")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config, SCRIPT_DIR)

        if args.command == "setup":
            cmd_setup(KeychainStorage(), config, args.config)
            return

        if config:
            for problem in validate_config(config):
                print(f"⚠ {problem}")
        settings = load_settings(config)

        if args.command == "check":
            cmd_check(settings)
        elif args.command == "serve":
            from inboxview.web import run_server
            run_server(settings, args.host, args.port, args.debug, args.verbose)

    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nOperation interrupted by user.")
        sys.exit(1)


if __name__ == "__main__":
    main()
