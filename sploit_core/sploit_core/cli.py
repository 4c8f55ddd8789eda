#!/usr/bin/env python3
import argparse
import logging
import os
import signal
import sys

from .config.definitions import DefinitionSource
from .config.settings import load_settings
from .errors import SploitError
from .obs.logging import setup_logging
from .scheduler.triggers import parse_trigger
from .utils.paths import resolve_config_file

logger = logging.getLogger('sploit.cli')


def cmd_run(args):
    from .daemon import Daemon

    settings = load_settings(args.config_file)
    setup_logging(settings.log_path or None, debug=args.debug)
    logger.info("Starting Sploitinator")
    daemon = Daemon(settings)

    def _interrupt(signum, frame):
        daemon.stop()

    signal.signal(signal.SIGINT, _interrupt)
    signal.signal(signal.SIGTERM, _interrupt)
    try:
        daemon.start()
    except SploitError:
        daemon.stop()
        raise
    daemon.wait()
    return 0


def cmd_check_config(args):
    settings = load_settings(args.config_file)
    setup_logging(None, debug=args.debug)
    cfg = settings.sploit
    for spec in (cfg.update_spec, cfg.status_spec):
        parse_trigger(spec)
    source = DefinitionSource(settings.resolve(cfg.watch_dir), settings.resolve(cfg.services_file))
    definitions = source.load()
    print(f"Settings: {os.path.abspath(args.config_file)}")
    print(f"Hosts ({len(definitions.targets)}):")
    for t in definitions.targets:
        svcs = ", ".join(f"{s.name}{list(s.ports)}" for s in t.services)
        print(f"  {t.name}: {svcs}")
    print("Schedule:")
    for svc in definitions.services:
        for mod in svc.modules:
            print(f"  {svc.name}/{mod.name}  '{mod.trigger_spec}'  ({len(mod.commands)} commands)")
    print(f"  msf-update  '{cfg.update_spec}'")
    print(f"  status-email  '{cfg.status_spec}'")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sploit", description="Scheduled Metasploit scans with new-finding alerts")
    parser.add_argument("-c", "--config-file", default=None, help="File to read Sploit settings (default: sploit.yml)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    # Same options after the subcommand; SUPPRESS keeps the top-level value when absent
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-c", "--config-file", default=argparse.SUPPRESS, help=argparse.SUPPRESS)
    common.add_argument("--debug", action="store_true", default=argparse.SUPPRESS, help=argparse.SUPPRESS)

    sub = parser.add_subparsers(dest="command")

    p_run = sub.add_parser("run", parents=[common], help="Run the daemon until interrupted")
    p_run.set_defaults(func=cmd_run)

    p_check = sub.add_parser("check-config", parents=[common], help="Validate settings and definitions and print the schedule")
    p_check.set_defaults(func=cmd_check_config)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    args.config_file = resolve_config_file(args.config_file)
    func = getattr(args, "func", cmd_run)
    if not os.path.exists(args.config_file):
        print(f"File {args.config_file} not found!", file=sys.stderr)
        return 1
    try:
        return func(args)
    except SploitError as e:
        print(f"sploit: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
