"""Entry point for ``python -m breathflow``."""

from breathflow.cli import cli

if __name__ == "__main__":
    cli()
