#!/usr/bin/env python3
"""
lssh - CLI interface.
"""

import sys

import click
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Config, DEFAULT_CONFIG_FILE
from .errors import LsshError, ValidationError
from .executor import Run
from .local_rc import build_local_rc_data
from .logger import StructuredLogger, set_logger
from .proxy import get_proxy_list

# Author: Vamsi


def load_config(console: Console, filename: str) -> Config:
    """
    Load the configuration file, exiting with a message on failure.

    :param console: Console for error output
    :param filename: Configuration file path
    :return: Config instance
    """
    try:
        return Config.load(filename)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
    except (yaml.YAMLError, ValueError) as e:
        console.print(f"[red]Error: invalid configuration:[/red] {e}")
    sys.exit(1)


def setup_logger(cfg: Config, verbose: bool = False) -> StructuredLogger:
    """Create the process-wide logger from the configuration."""
    logger = StructuredLogger(
        level="debug" if verbose else cfg.log_level,
        log_file=cfg.log_file,
        log_format=cfg.log_format
    )
    set_logger(logger)
    return logger


def stdin_is_piped() -> bool:
    """Whether standard input is a pipe or file rather than a terminal."""
    return sys.stdin is not None and not sys.stdin.isatty()


def read_piped_stdin() -> bytes:
    """Piped (non-terminal) standard input, or empty bytes."""
    if not stdin_is_piped():
        return b""
    return sys.stdin.buffer.read()


@click.group()
@click.version_option(version=__version__)
@click.option('--file', '-f', 'config_file', default=DEFAULT_CONFIG_FILE,
              show_default=True, help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config_file, verbose):
    """lssh - run commands and shells on many SSH servers at once."""
    ctx.ensure_object(dict)
    ctx.obj['config_file'] = config_file
    ctx.obj['verbose'] = verbose


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.option('--host', '-H', 'hosts', multiple=True, help='Server name (repeatable)')
@click.option('--parallel', '-p', is_flag=True, help='Run on all servers at the same time')
@click.option('--term', '-t', is_flag=True, help='Allocate a pseudo-terminal for the command')
@click.option('--x11', '-X', is_flag=True, help='Enable X11 forwarding')
@click.argument('command', nargs=-1, type=click.UNPROCESSED, required=True)
@click.pass_context
def run(ctx, hosts, parallel, term, x11, command):
    """Execute COMMAND on the selected servers."""
    console = Console(stderr=True)
    cfg = load_config(console, ctx.obj['config_file'])
    logger = setup_logger(cfg, ctx.obj['verbose'])

    Run(
        server_list=list(hosts),
        config=cfg,
        is_parallel=parallel,
        exec_cmd=list(command),
        stdin_data=read_piped_stdin(),
        stdin_piped=stdin_is_piped(),
        is_term=term,
        is_x11=x11,
        logger=logger,
    ).start()


@cli.command()
@click.option('--host', '-H', 'hosts', multiple=True, help='Server name')
@click.option('--local-rc', '-L', is_flag=True, help='Start the shell with local rc files')
@click.option('--local-rc-file', multiple=True, help='Local rc file to send (repeatable)')
@click.option('--x11', '-X', is_flag=True, help='Enable X11 forwarding')
@click.pass_context
def shell(ctx, hosts, local_rc, local_rc_file, x11):
    """Open an interactive shell on one server."""
    console = Console(stderr=True)
    cfg = load_config(console, ctx.obj['config_file'])
    logger = setup_logger(cfg, ctx.obj['verbose'])

    hosts = list(hosts)
    local_rc_data = ""
    decode_cmd = ""
    is_local_rc = False

    if len(hosts) == 1 and hosts[0] in cfg.servers:
        server = cfg.servers[hosts[0]]
        is_local_rc = local_rc or server.local_rc
        decode_cmd = server.local_rc_decode_cmd
        if is_local_rc:
            try:
                local_rc_data = build_local_rc_data(list(local_rc_file) or server.local_rc_file)
            except ValidationError as e:
                console.print(f"[red]Error:[/red] {e}")
                sys.exit(1)

    Run(
        server_list=hosts,
        config=cfg,
        is_x11=x11,
        is_local_rc=is_local_rc,
        local_rc_data=local_rc_data,
        local_rc_decode_cmd=decode_cmd,
        logger=logger,
    ).start()


@cli.command(name='list')
@click.pass_context
def list_servers(ctx):
    """List configured servers."""
    console = Console()
    cfg = load_config(Console(stderr=True), ctx.obj['config_file'])

    table = Table(title="Servers")
    table.add_column("Name", style="cyan")
    table.add_column("User", style="green")
    table.add_column("Address", style="white")
    table.add_column("Proxy", style="yellow")
    table.add_column("Note", style="white")

    for name in cfg.server_names():
        server = cfg.servers[name]
        proxy = f"{server.proxy} ({server.proxy_type})" if server.proxy else ""
        table.add_row(name, server.user, f"{server.addr}:{server.dial_port}", proxy, server.note)

    console.print(table)


@cli.command(name='config-validate')
@click.pass_context
def config_validate(ctx):
    """Validate the configuration file and every proxy chain."""
    console = Console()
    cfg = load_config(Console(stderr=True), ctx.obj['config_file'])

    table = Table(title="Proxy Chains")
    table.add_column("Server", style="cyan")
    table.add_column("Route", style="white")
    table.add_column("Status", style="white")

    failures = 0
    for name in cfg.server_names():
        try:
            hops, _ = get_proxy_list(name, cfg)
        except LsshError as e:
            failures += 1
            table.add_row(name, "", f"[red]{e}[/red]")
            continue
        route = " -> ".join([f"{hop.name}({hop.kind.value})" for hop in hops] + [name])
        table.add_row(name, route, "[green]OK[/green]")

    console.print(table)

    if failures:
        console.print(f"[red]{failures} server(s) have invalid proxy chains[/red]")
        sys.exit(1)

    console.print(f"[green]Configuration is valid:[/green] {len(cfg.servers)} servers, "
                  f"{len(cfg.proxies)} proxies")


if __name__ == '__main__':
    cli()
