import sys
from snowyland.core.driver import snowy_land


def cli_entry():
    """
    Command line entry point for the snowy land benchmark.
    """
    sys.exit(snowy_land())


if __name__ == "__main__":
    cli_entry()
