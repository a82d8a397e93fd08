"""pulsebridge CLI — entry point for the plugins, demo and watch commands."""

import click

from pulsebridge import __version__


@click.group()
@click.version_option(version=__version__, package_name="pulsebridge")
def main() -> None:
    """pulsebridge — medical device plugins, sync and alerting."""


# Register subcommands (lazy imports keep startup fast)
from .demo_cmd import demo
from .plugins_cmd import plugins
from .watch_cmd import watch

main.add_command(plugins)
main.add_command(demo)
main.add_command(watch)
