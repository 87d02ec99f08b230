"""Command-line entry point for the registry load balancer."""

from args import parse_args
from cli_lb import run_lb_server


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    run_lb_server(args)


if __name__ == "__main__":
    main()
