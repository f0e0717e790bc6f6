"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal
import sys
import threading

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..exceptions import assert_config
from ..object_store import DryRunObjectStore, KubeObjectStore, ObjectStoreBase
from ..operator import WATCHED_KINDS, Operator
from ..registry import ResourceRegistry, default_registry
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    name = "run"

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(self.name, help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        runtime_args.add_argument(
            "--exit_when_idle",
            action="store_true",
            default=False,
            help="(dry run) Print the resulting objects and exit once nothing is left to reconcile",
        )
        runtime_args.add_argument(
            "--idle_timeout",
            type=float,
            default=60.0,
            help="(dry run) Max seconds to wait for the operator to go idle",
        )
        return parser

    def cmd(self, args: argparse.Namespace) -> int:
        # Validate args
        assert_config(
            args.resource_dir is None
            or (config.dry_run and os.path.isdir(args.resource_dir)),
            "Can only specify --resource_dir with dry run and it must point to a valid directory",
        )
        assert_config(
            not args.exit_when_idle or config.dry_run,
            "Can only specify --exit_when_idle with dry run",
        )

        registry = default_registry()
        resources = self._parse_resource_dir(args.resource_dir)
        object_store = self._setup_object_store(registry, resources)
        operator = Operator(object_store)

        stop_event = threading.Event()

        # Register the signal handler to stop the operator
        def do_stop(*_, **__):  # pragma: no cover
            log.info("Received shutdown signal")
            stop_event.set()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        log.info("Starting Operator")
        operator.start()
        try:
            if args.exit_when_idle:
                if not operator.wait_for_idle(args.idle_timeout):
                    log.warning("Operator did not go idle within %ss", args.idle_timeout)
                self._dump_state(object_store)
            else:
                while not stop_event.wait(config.shutdown_poll_time):
                    if operator.watches_failed():
                        log.error("A watch failed permanently. Exiting")
                        return 1
        finally:
            operator.stop()

        # All done!
        log.info("SHUTTING DOWN")
        return 0

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource for resource in yaml.safe_load_all(handle) if resource
                        )
        return all_resources

    @staticmethod
    def _setup_object_store(
        registry: ResourceRegistry,
        resources: List[dict],
    ) -> ObjectStoreBase:
        """Set up the store for the run. In dry run mode an in-memory store
        seeded with the given resources is used.
        """
        if config.dry_run:
            log.info("Running DRY RUN with %d seeded resources", len(resources))
            return DryRunObjectStore(registry, resources=resources)
        log.info("Running against the cluster")
        return KubeObjectStore(registry)

    @staticmethod
    def _dump_state(object_store: ObjectStoreBase):
        """Write every object in the store to stdout as a yaml stream"""
        all_objects = []
        for kind in WATCHED_KINDS:
            _, objects = object_store.filter_objects_current_state(kind)
            all_objects.extend(objects)
        yaml.safe_dump_all(all_objects, sys.stdout, sort_keys=False)
