from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional, Tuple

from .composer import ScriptComposer, resolve_platform
from .config import ConfigError, ConfigStore
from .constants import DEFAULT_CONFIG_FILE, DEFAULT_SCRIPTLETS_DIR, LOG_FORMAT, ExitCodes
from .models import RepoSpec, load_repo_specs
from .resolver import CyclicDependencyError, MissingDependencyError, ResolutionError, resolve_repos
from .scriptlets import ScriptletLibrary

logger = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace) -> ConfigStore:
    return ConfigStore.from_file(args.config)


def _load_composer(args: argparse.Namespace, config: ConfigStore) -> Tuple[List[str], ScriptComposer]:
    specs = load_repo_specs(config)
    order = resolve_repos(config, specs)
    os_family, packager = resolve_platform(config, args.os, args.packager)
    library = ScriptletLibrary.from_directory(args.scriptlets)
    composer = ScriptComposer(config, library, os_family, packager=packager, specs=specs)
    return order, composer


def _describe(spec: RepoSpec) -> str:
    line = f"{spec.id}\t{spec.path or '-'}\t{','.join(spec.deps) or '-'}"
    if spec.skipped:
        line += "\tskipped"
    return line


def cmd_list(args: argparse.Namespace) -> int:
    config = _load_config(args)
    for spec in load_repo_specs(config).values():
        print(_describe(spec))
    return ExitCodes.SUCCESS.value


def cmd_order(args: argparse.Namespace) -> int:
    order = resolve_repos(_load_config(args))
    if args.json:
        print(json.dumps(order, indent=2))
    else:
        for repo_id in order:
            print(repo_id)
    return ExitCodes.SUCCESS.value


def cmd_plan(args: argparse.Namespace) -> int:
    order, composer = _load_composer(args, _load_config(args))
    for key in composer.plan(order):
        fragment = composer.library.lookup(key)
        print(f"{'present' if fragment.loaded else 'absent'}\t{fragment.path}")
    return ExitCodes.SUCCESS.value


def cmd_compose(args: argparse.Namespace) -> int:
    order, composer = _load_composer(args, _load_config(args))
    script = composer.compose(order)
    if args.output:
        written = script.write(args.output)
        logger.info("Provisioning script written to %s", written)
    else:
        sys.stdout.write(script.text)
    return ExitCodes.SUCCESS.value


def cmd_config_get(args: argparse.Namespace) -> int:
    value = _load_config(args).get(args.key)
    if value is None:
        logger.error("Configuration key %s is not set", args.key)
        return ExitCodes.CONFIG_ERROR.value
    print(value)
    return ExitCodes.SUCCESS.value


def cmd_config_set(args: argparse.Namespace) -> int:
    config = _load_config(args)
    config.set(args.key, args.value)
    logger.info("Set %s=%s in %s", args.key, args.value, config.path)
    return ExitCodes.SUCCESS.value


def cmd_config_show(args: argparse.Namespace) -> int:
    for key, value in _load_config(args).items():
        print(f"{key}={value}")
    return ExitCodes.SUCCESS.value


def _report_resolution_error(exc: ResolutionError) -> None:
    if isinstance(exc, CyclicDependencyError):
        for cycle in exc.cycles:
            logger.error("Cyclic dependency: %s", " -> ".join(cycle))
    if isinstance(exc, (CyclicDependencyError, MissingDependencyError)):
        for item in exc.missing:
            logger.error("Missing dependency: %s", item.describe())
    else:
        logger.error("%s", exc)


def _add_platform_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--os", dest="os", help="OS family of the target environment.")
    parser.add_argument("--packager", dest="packager", help="Package manager of the target environment.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provisioner",
        description="Order development repositories and compose their provisioning script",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        help="Path to the development configuration (properties, YAML or JSON).",
    )
    parser.add_argument(
        "--scriptlets",
        default=DEFAULT_SCRIPTLETS_DIR,
        help="Directory holding the scriptlet library.",
    )
    parser.add_argument(
        "--loglevel",
        dest="log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level",
    )
    parser.add_argument("--logfile", dest="log_file", help="Log output file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List declared repositories")
    list_parser.set_defaults(func=cmd_list)

    order_parser = subparsers.add_parser("order", help="Print repositories in dependency order")
    order_parser.add_argument("--json", action="store_true", help="Emit the order as a JSON list")
    order_parser.set_defaults(func=cmd_order)

    plan_parser = subparsers.add_parser("plan", help="Show which scriptlets the script would include")
    _add_platform_arguments(plan_parser)
    plan_parser.set_defaults(func=cmd_plan)

    compose_parser = subparsers.add_parser("compose", help="Compose the provisioning script")
    _add_platform_arguments(compose_parser)
    compose_parser.add_argument("-o", "--output", help="Write the script here instead of stdout")
    compose_parser.set_defaults(func=cmd_compose)

    config_parser = subparsers.add_parser("config", help="Read or edit the configuration store")
    config_commands = config_parser.add_subparsers(dest="config_command", required=True)
    get_parser = config_commands.add_parser("get", help="Print one configuration value")
    get_parser.add_argument("key")
    get_parser.set_defaults(func=cmd_config_get)
    set_parser = config_commands.add_parser("set", help="Set and persist one configuration value")
    set_parser.add_argument("key")
    set_parser.add_argument("value")
    set_parser.set_defaults(func=cmd_config_set)
    show_parser = config_commands.add_parser("show", help="Print every configuration value")
    show_parser.set_defaults(func=cmd_config_show)

    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    if args.log_file:
        logging.basicConfig(filename=args.log_file, level=log_level, format=LOG_FORMAT)
    else:
        logging.basicConfig(level=log_level, format=LOG_FORMAT)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)
    try:
        return args.func(args)
    except ResolutionError as exc:
        _report_resolution_error(exc)
        return ExitCodes.RESOLUTION_ERROR.value
    except ConfigError as exc:
        logger.error("%s", exc)
        return ExitCodes.CONFIG_ERROR.value
    except OSError as exc:
        logger.error("File error: %s", exc)
        return ExitCodes.CONFIG_ERROR.value


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
