"""Entry point for `python -m gasp`."""

from gasp.cli import cli

if __name__ == "__main__":
    cli()
