"""
Lightswitch CLI - runs the daemon and manages the rule table.

Provides commands for:
- Running the process monitor daemon (foreground)
- Listing, adding and removing rules
- Introspecting a process
"""

import argparse
import sys
from pathlib import Path

from lightswitch import __version__
from lightswitch.config import load_config
from lightswitch.core import ProcessMonitorError, SwitchToProfile, describe_action
from lightswitch.daemon import LightswitchDaemon, create_context
from lightswitch.logging_config import get_logger, setup_logging
from lightswitch.rules import RuleStore

logger = get_logger(__name__)

DEFAULT_CONFIG = "/etc/lightswitch/lightswitch.yaml"


def _open_rules(config_path: Path) -> RuleStore | None:
    """Load the configuration and the rule table it points to."""
    try:
        config = load_config(config_path)
    except Exception as e:
        logger.error("Could not load configuration: %s", e)
        return None

    store = RuleStore(config.rules_path)
    try:
        store.load()
    except (OSError, ValueError) as e:
        logger.error("Could not load rules from %s: %s", store.path, e)
        return None
    return store


def cmd_daemon(args: argparse.Namespace) -> int:
    """Run in the foreground and monitor processes."""
    try:
        context = create_context(args.config)
    except Exception as e:
        logger.error("Could not load configuration: %s", e)
        return 1

    daemon = LightswitchDaemon(context, detect_deadlocks=args.log_level == "DEBUG")
    daemon.install_signal_handlers()

    try:
        return daemon.run()
    except (OSError, ValueError, ProcessMonitorError):
        logger.critical("Fatal error", exc_info=True)
        return 1


def cmd_list_rules(args: argparse.Namespace) -> int:
    """Print all rules with their index."""
    store = _open_rules(Path(args.config))
    if store is None:
        return 1

    print("Dumping rules:")
    for index, (exe_file, action) in enumerate(store.items()):
        print(f"{index}: {exe_file} => {describe_action(action)}")
    return 0


def cmd_rule_add(args: argparse.Namespace) -> int:
    """Add a rule that switches to a profile when an executable starts."""
    store = _open_rules(Path(args.config))
    if store is None:
        return 1

    if len(args.rule) != 2:
        logger.error("Malformed rule definition: expected <executable> <profile>, got %s argument(s)",
                     len(args.rule))
        return 0

    exe_file, profile_name = args.rule
    store.upsert(exe_file, SwitchToProfile(profile_name=profile_name))

    try:
        store.save()
    except OSError as e:
        logger.error("Could not save rules to %s: %s", store.path, e)
        return 1

    logger.info("Added rule: %s => %s", exe_file, profile_name)
    return 0


def cmd_rule_remove(args: argparse.Namespace) -> int:
    """Accept a rule index; removal is not available from the command line yet."""
    store = _open_rules(Path(args.config))
    if store is None:
        return 1

    logger.warning("Removing rules is not implemented, rule %s left unchanged", args.index)
    return 0


def cmd_introspect(args: argparse.Namespace) -> int:
    """Accept a pid; introspection is not available yet."""
    store = _open_rules(Path(args.config))
    if store is None:
        return 1

    logger.debug("Introspection of pid %s requested", args.pid)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="lightswitch",
        description="Lightswitch - switch lighting profiles when applications start"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG})"
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Log level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Optional log file path (logs to console if not specified)'
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("daemon", help="Run in foreground and monitor running processes")
    subparsers.add_parser("list-rules", help="List all rules")

    add_parser = subparsers.add_parser("rule-add", help="Add a rule: <executable> <profile>")
    add_parser.add_argument("rule", nargs="*", help="Executable path and profile name")

    remove_parser = subparsers.add_parser("rule-remove", help="Remove the rule at an index")
    remove_parser.add_argument("index", type=int, help="Index as shown by list-rules")

    introspect_parser = subparsers.add_parser("introspect", help="Introspect process with PID")
    introspect_parser.add_argument("pid", type=int, help="Process id")

    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_file=args.log_file)

    handlers = {
        "daemon": cmd_daemon,
        "list-rules": cmd_list_rules,
        "rule-add": cmd_rule_add,
        "rule-remove": cmd_rule_remove,
        "introspect": cmd_introspect,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    logger.debug("Starting lightswitch: Version %s", __version__)
    return handler(args)


if __name__ == '__main__':
    sys.exit(main())
