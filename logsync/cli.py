import asyncio
import dataclasses
import functools
from collections.abc import Callable
from typing import Any

import click

from logsync._cogs.configs import configuration
from logsync._cogs.helpers import loaders
from logsync._core.actions import loggers
from logsync._core.intents import registries
from logsync._core.reactor import running


@dataclasses.dataclass()
class CLIControls:
    """ Controls of the embedding code, which are impossible to pass via CLI. """
    ready_flag: asyncio.Event | None = None
    stop_flag: asyncio.Event | None = None
    registry: registries.ReconcilerRegistry | None = None
    settings: configuration.OperatorSettings | None = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: bool | None = False,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(prog_name='logsync')
@click.group(name='logsync', context_settings=dict(
    auto_envvar_prefix='LOGSYNC',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-c', '--config', 'config_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--cluster', type=str, default=None)
@click.option('--node-name', type=str, default=None, envvar=['LOGSYNC_RUN_NODE_NAME', 'NODE_NAME'])
@click.option('--vm-mode/--cluster-mode', 'vm_mode', default=None)
@click.option('-m', '--module', 'modules', multiple=True)
@click.argument('paths', nargs=-1)
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        __controls: CLIControls,
        paths: list[str],
        modules: list[str],
        config_path: str | None,
        cluster: str | None,
        node_name: str | None,
        vm_mode: bool | None,
) -> None:
    """ Start the agent and reconcile the log configurations of this node. """
    if config_path is not None and __controls.settings is not None:
        raise click.UsageError("The settings are already provided; --config cannot be used.")
    try:
        settings = (configuration.load(config_path) if config_path is not None else
                    __controls.settings)
    except configuration.ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint='--config')
    if __controls.registry is not None:
        registries.set_default_registry(__controls.registry)
    loaders.preload(
        paths=paths,
        modules=modules,
    )
    return running.run(
        cluster=cluster,
        node_name=node_name,
        vm_mode=vm_mode,
        registry=__controls.registry,
        settings=settings,
        stop_flag=__controls.stop_flag,
        ready_flag=__controls.ready_flag,
    )
