"""Argument parsing for the registry load balancer."""

import argparse


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="jsr-lb",
        description=(
            "Edge router for the registry frontend, API and storage buckets"
        ),
        add_help=True,
    )

    parser.add_argument("--host",
                        dest="HOST",
                        help="Address to bind (default: 127.0.0.1 or LB_HOST)",
                        action="store", type=str)
    parser.add_argument("--port",
                        dest="PORT",
                        help="Port to listen on (default: 8080 or LB_PORT)",
                        action="store", type=int)
    parser.add_argument("--allow-external",
                        dest="ALLOW_EXTERNAL",
                        help="Allow binding to a non-loopback address.",
                        action="store_true")
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to YAML configuration file",
                        action="store",
                        type=str)

    backends = parser.add_argument_group("backends")
    backends.add_argument("--api-url",
                          dest="API_URL",
                          help="Base URL of the API service",
                          action="store", type=str)
    backends.add_argument("--frontend-url",
                          dest="FRONTEND_URL",
                          help="Base URL of the frontend service",
                          action="store", type=str)
    backends.add_argument("--gcs-endpoint",
                          dest="GCS_ENDPOINT",
                          help="Object storage endpoint",
                          action="store", type=str)

    hosts = parser.add_argument_group("hostnames")
    hosts.add_argument("--root-domain",
                       dest="ROOT_DOMAIN",
                       help="Root hostname (frontend and module files)",
                       action="store", type=str)
    hosts.add_argument("--api-domain",
                       dest="API_DOMAIN",
                       help="API hostname",
                       action="store", type=str)
    hosts.add_argument("--npm-domain",
                       dest="NPM_DOMAIN",
                       help="npm compatibility hostname",
                       action="store", type=str)

    parser.add_argument("--no-cache",
                        dest="NO_CACHE",
                        help="Disable the edge cache.",
                        action="store_true")
    parser.add_argument("--create-buckets",
                        dest="CREATE_BUCKETS",
                        help="Create the modules and npm buckets in a local storage emulator.",
                        action="store_true")
    parser.add_argument("--bucket",
                        dest="EXTRA_BUCKETS",
                        help="Additional bucket to create with --create-buckets (repeatable)",
                        action="append",
                        type=str,
                        default=[])

    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)

    return parser.parse_args(argv)
