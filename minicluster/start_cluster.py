#!/usr/bin/env python3
"""Start a local cluster and keep it running until interrupted.

For settings it uses the same env variables as when running the tests.
"""

import argparse
import logging
import pathlib as pl
import sys
import threading

from minicluster.cluster_management import errors
from minicluster.cluster_management import nodes
from minicluster.cluster_management import supervisor
from minicluster.utils import helpers
from minicluster.utils import security as security_mod

LOGGER = logging.getLogger(__name__)


def get_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.split("\n", maxsplit=1)[0])
    parser.add_argument(
        "-m",
        "--masters",
        type=int,
        default=1,
        help="Number of master nodes (default: 1)",
    )
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=1,
        help="Number of worker nodes (default: 1)",
    )
    parser.add_argument(
        "--metadata-service",
        action="store_true",
        help="Start also the metadata service (default: false)",
    )
    parser.add_argument(
        "-b",
        "--bin-dir",
        type=helpers.check_dir_arg,
        default="",
        help="Path to directory with the master and worker binaries",
    )
    parser.add_argument(
        "--krb5-conf",
        help="Path to krb5.conf; enables Kerberos together with --principal and --keytab",
    )
    parser.add_argument("--principal", help="Service principal")
    parser.add_argument("--keytab", help="Path to keytab file")
    parser.add_argument(
        "--protection",
        choices=[p.value for p in security_mod.SaslProtection],
        default=security_mod.SaslProtection.AUTHENTICATION.value,
        help="Wire protection level (default: authentication)",
    )
    parser.add_argument(
        "-s",
        "--snapshot",
        help="Write JSON status snapshot of the started cluster to this file",
    )
    return parser.parse_args(argv)


def get_spec(args: argparse.Namespace) -> nodes.ClusterSpec:
    security = None
    krb_args = (args.krb5_conf, args.principal, args.keytab)
    if any(krb_args):
        if not all(krb_args):
            msg = "All of --krb5-conf, --principal and --keytab must be set for Kerberos."
            raise ValueError(msg)
        security = security_mod.SecurityConfig(
            krb5_conf=args.krb5_conf,
            service_principal=args.principal,
            keytab_file=args.keytab,
            protection=security_mod.SaslProtection(args.protection),
        )

    return nodes.ClusterSpec(
        num_masters=args.masters,
        num_workers=args.workers,
        enable_kerberos=security is not None,
        security=security,
        enable_metadata_service=args.metadata_service,
    )


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(format="%(levelname)s:%(message)s", level=logging.INFO)
    args = get_args(argv)

    try:
        spec = get_spec(args)
        handle = supervisor.build_cluster(spec, bin_dir=args.bin_dir or "")
    except (ValueError, errors.ClusterError):
        LOGGER.exception("Failed to start the cluster")
        return 1
    except KeyboardInterrupt:
        # The partially started cluster was already stopped by the build
        LOGGER.info("Interrupted while starting the cluster.")
        return 1

    try:
        with handle:
            if handle.metadata_service_address:
                LOGGER.info(f"Metadata service: {handle.metadata_service_address}")
            LOGGER.info(f"Masters: {handle.master_addresses_str}")
            LOGGER.info(f"Workers: {','.join(str(a) for a in handle.worker_addresses)}")
            if args.snapshot:
                handle.write_snapshot(pl.Path(args.snapshot))
                LOGGER.info(f"Status snapshot written to '{args.snapshot}'.")

            LOGGER.info("Cluster is running, press Ctrl+C to stop it.")
            try:
                threading.Event().wait()
            except KeyboardInterrupt:
                LOGGER.info("Stopping the cluster.")
    except errors.TeardownError:
        LOGGER.exception("Failed to stop the cluster")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
