"""Allow `python3 -m devicewatch`."""

from devicewatch.main import cli

cli()
