#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the NamespaceClass
operator
"""

# Standard
from typing import Dict, List, Optional, Tuple
import argparse
import sys

# First Party
import aconfig
import alog

# Local
from .cmd import CmdBase, RunOperatorCmd
from .config import configure_logging, library_config
from .log_format import NsClassJsonFormatter

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(
    parser,
    config_obj: Optional[aconfig.Config] = None,
    path: Optional[List[str]] = None,
) -> Dict[str, List[str]]:
    """Add a --dotted.key argument for every leaf of the library config

    Returns:
        setters:  Dict[str, List[str]]
            Mapping from argparse dest to the key path in the config
    """
    path = path or []
    setters = {}
    config_obj = library_config if config_obj is None else config_obj
    for key, val in config_obj.items():
        sub_path = path + [key]

        # Nested sections recurse
        if isinstance(val, dict):
            setters.update(
                add_library_config_args(parser, config_obj=val, path=sub_path)
            )
            continue

        arg_name = ".".join(sub_path)
        dest_name = "_".join(sub_path)
        kwargs = {
            "default": val,
            "dest": dest_name,
            "help": f"Library config override for {arg_name} (see nsclass.config)",
        }
        if isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif val is not None:
            kwargs["type"] = type(val)

        if (
            f"--{arg_name}"
            not in parser._option_string_actions  # pylint: disable=protected-access
        ):
            parser.add_argument(f"--{arg_name}", **kwargs)
            setters[dest_name] = sub_path
    return setters


def update_library_config(args: argparse.Namespace, setters: Dict[str, List[str]]):
    """Update the library config values based on the parsed arguments"""
    for dest_name, config_path in setters.items():
        config_obj = library_config
        for part in config_path[:-1]:
            config_obj = config_obj[part]
        config_obj[config_path[-1]] = getattr(args, dest_name)


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, List[str]]]:
    """Add the subparser and set up the default fun call"""
    parser = cmd.add_subparser(subparsers)
    parser.set_defaults(func=cmd.cmd)
    library_args = parser.add_argument_group("Library Configuration")
    library_config_setters = add_library_config_args(library_args)
    return parser, library_config_setters


## Main ########################################################################


def main(argv: Optional[List[str]] = None) -> int:
    """The main module provides the executable entrypoint for the operator"""
    argv = sys.argv[1:] if argv is None else argv
    parser = argparse.ArgumentParser(description=__doc__)

    # Add the subcommands
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_operator_parser, library_config_setters = add_command(
        subparsers, RunOperatorCmd()
    )

    # Fall back to the run command if no command is given
    if not argv or argv[0] not in subparsers.choices:
        args = run_operator_parser.parse_args(argv)
    else:
        args = parser.parse_args(argv)

    # Provide overrides to the library configs
    update_library_config(args, library_config_setters)

    # Reconfigure logging
    configure_logging(
        library_config,
        formatter=NsClassJsonFormatter() if library_config.log_json else None,
    )

    # Run the command's function
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
