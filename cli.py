#!/usr/bin/env python3
"""
ARAG Agent Copilot — Command Line Interface
Triage a client email from the terminal and manage the workspace.

Usage:
    python cli.py analyze --text-file email.txt --client "Jane Doe"
    python cli.py analyze --image screenshot.png
    python cli.py history "Jane Doe"
    python cli.py playbook set rules.txt
    python cli.py cloud set https://xyz.supabase.co <key>
    python cli.py status
"""
import argparse
import logging
import sys
from pathlib import Path

from config.settings import config
from config.workspace import CloudSettings, open_config_store
from memory.history import CLIENT_MEMORY_DDL, remote_is_authoritative
from orchestrator.case import CaseState, build_history, build_workspace
from orchestrator.errors import CopilotError
from orchestrator.knowledge import EmailInput
from outputs.formatters import format_failure, format_history, format_result


def setup_logging(debug: bool = False):
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _read_email(args) -> EmailInput:
    if args.image:
        return EmailInput.from_image(Path(args.image).read_bytes())
    if args.text_file:
        return EmailInput.from_text(Path(args.text_file).read_text(encoding="utf-8"))
    if args.text is not None:
        return EmailInput.from_text(args.text)
    return EmailInput.from_text(sys.stdin.read())


def cmd_analyze(args):
    """Run one case and print the result."""
    store = open_config_store()
    workspace = build_workspace(store)
    snapshot = workspace.run_case(_read_email(args), client_id=args.client)

    if snapshot.state == CaseState.FAILED:
        print(format_failure(snapshot.error_kind, snapshot.error_message), file=sys.stderr)
        return 1

    print(format_result(snapshot.result, snapshot.client_id))
    print()
    print(format_history(snapshot.history, snapshot.client_id))
    return 0


def cmd_history(args):
    store = open_config_store()
    history = build_history(store).read(args.client)
    print(format_history(history, args.client.strip()))
    return 0


def cmd_clients(args):
    clients = build_history(open_config_store()).list_clients()
    if not clients:
        print("No local client history (remote store does not list clients).")
    for client in clients:
        print(client)
    return 0


def cmd_playbook(args):
    store = open_config_store()
    if args.action == "show":
        playbook = store.get_playbook()
        print(playbook.rules_text)
        print(f"\nHandbook: {playbook.handbook_name or 'none'}")
    elif args.action == "set":
        store.save_playbook_rules(Path(args.path).read_text(encoding="utf-8"))
        print("Playbook saved.")
    elif args.action == "attach":
        path = Path(args.path)
        store.attach_handbook(path.name, path.read_bytes())
        print(f"Handbook attached: {path.name}")
    elif args.action == "detach":
        print("Handbook removed." if store.detach_handbook() else "No handbook attached.")
    return 0


def cmd_cloud(args):
    store = open_config_store()
    if args.action == "show":
        settings = store.get_cloud_settings()
        print(f"URL:      {settings.url or '-'}")
        print(f"Key:      {'set' if settings.api_key else '-'}")
        print(f"Enabled:  {settings.enabled}")
        print(f"History:  {'remote' if remote_is_authoritative(settings) else 'local'}")
    elif args.action == "set":
        store.save_cloud_settings(CloudSettings(url=args.url, api_key=args.key, enabled=True))
        print("Cloud history enabled.")
    elif args.action == "disable":
        settings = store.get_cloud_settings()
        settings.enabled = False
        store.save_cloud_settings(settings)
        print("Cloud history disabled; using local history.")
    return 0


def cmd_schema(args):
    """Print the SQL that creates the remote history table."""
    print(CLIENT_MEMORY_DDL)
    return 0


def cmd_status(args):
    print("ARAG Agent Copilot — Workspace Status")
    print("=" * 40)
    store = open_config_store()
    settings = store.get_cloud_settings()
    playbook = store.get_playbook()
    print(f"Workspace file: {store.kv.path}")
    print(f"{'✅' if store.get_api_key() else '❌'} Claude API key: "
          f"{'configured' if store.get_api_key() else 'missing'} (model={config.claude.model})")
    print(f"History store: {'remote (' + settings.url + ')' if remote_is_authoritative(settings) else 'local'}")
    print(f"Playbook: {len(playbook.rules_text)} chars, handbook={playbook.handbook_name or 'none'}")
    print(f"Debug mode: {config.debug}")
    return 0


def cmd_serve(args):
    import uvicorn
    uvicorn.run("outputs.dashboard:app", host=args.host, port=args.port)
    return 0


def main():
    parser = argparse.ArgumentParser(description="ARAG Agent Copilot")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Analyze an email and draft replies")
    source = analyze_parser.add_mutually_exclusive_group()
    source.add_argument("--text", type=str, help="Email text")
    source.add_argument("--text-file", type=str, help="File containing the email text")
    source.add_argument("--image", type=str, help="Email screenshot (PNG/JPEG)")
    analyze_parser.add_argument("--client", type=str, default=None,
                                help="Client ID / name (blank to auto-detect)")

    history_parser = subparsers.add_parser("history", help="Show a client's history")
    history_parser.add_argument("client", type=str)

    subparsers.add_parser("clients", help="List clients with local history")

    playbook_parser = subparsers.add_parser("playbook", help="Show or edit the playbook")
    playbook_parser.add_argument("action", choices=["show", "set", "attach", "detach"])
    playbook_parser.add_argument("path", nargs="?", help="Rules text file (set) or PDF (attach)")

    cloud_parser = subparsers.add_parser("cloud", help="Remote history settings")
    cloud_parser.add_argument("action", choices=["show", "set", "disable"])
    cloud_parser.add_argument("url", nargs="?")
    cloud_parser.add_argument("key", nargs="?")

    subparsers.add_parser("schema", help="Print the remote history table SQL")
    subparsers.add_parser("status", help="Check workspace status")

    serve_parser = subparsers.add_parser("serve", help="Run the workspace API")
    serve_parser.add_argument("--host", default=config.dashboard.host)
    serve_parser.add_argument("--port", type=int, default=config.dashboard.port)

    args = parser.parse_args()
    setup_logging(args.debug or config.debug)

    if args.command == "playbook" and args.action in ("set", "attach") and not args.path:
        parser.error(f"playbook {args.action} needs a path")
    if args.command == "cloud" and args.action == "set" and not (args.url and args.key):
        parser.error("cloud set needs a URL and a key")

    commands = {
        "analyze": cmd_analyze,
        "history": cmd_history,
        "clients": cmd_clients,
        "playbook": cmd_playbook,
        "cloud": cmd_cloud,
        "schema": cmd_schema,
        "status": cmd_status,
        "serve": cmd_serve,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    try:
        return handler(args)
    except CopilotError as e:
        print(f"Error [{e.kind}]: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
