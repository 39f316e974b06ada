from pharbuilder.cli import cli

cli()
