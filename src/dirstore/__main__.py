from dirstore.cli import cli

cli()
