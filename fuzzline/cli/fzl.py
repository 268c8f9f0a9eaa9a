#!/usr/bin/env python3
"""
Command line front end for fuzzline.

Usage:
    fzl filter QUERY [--input FILE]        - Rank stdin or a file against QUERY
    fzl filter QUERY --dynamic --cmd CMD   - Filter a command's output while it runs
    fzl exec CMD                           - Run a command and report its output
    fzl grep QUERY                         - Fuzzy grep the current project
    fzl grep QUERY --sync --grep-cmd CMD   - Run a grep command in JSON mode
    fzl forerunner                         - Warm the grep cache for a git project
    fzl cache list|purge                   - Inspect or clear the output cache

Every result is written to stdout as one JSON record per line; logs go to
stderr.
"""

import asyncio
import functools
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from fuzzline.engine.cache import OutputCache
from fuzzline.engine.config import Config
from fuzzline.engine.dynamic import DynamicRunner
from fuzzline.engine.errors import ConfigError, FuzzlineError
from fuzzline.engine.grep import dyn_grep, forerunner, sync_grep
from fuzzline.engine.icon import IconPainter
from fuzzline.engine.matcher import Algo, Bonus, MatchType
from fuzzline.engine.models import FilterContext, Snapshot
from fuzzline.engine.printer import decorate_results, println_json
from fuzzline.engine.process import LightCommand, prepare_exec_cmd
from fuzzline.engine.ranker import sync_run
from fuzzline.engine.source import Source

console = Console()

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str, log_file: Optional[Path] = None) -> None:
    """Send logs to stderr, stdout is reserved for JSON output."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper())
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, rotation="1 day", retention="7 days", level="DEBUG")


@dataclass
class Params:
    """Global options shared by every command."""
    config: Config
    number: Optional[int] = None
    winwidth: Optional[int] = None
    enable_icon: bool = False
    no_cache: bool = False

    @property
    def cache(self) -> Optional[OutputCache]:
        if self.no_cache or not self.config.cache.enabled:
            return None
        return OutputCache(self.config.cache.directory)

    def painter(self, kind: IconPainter) -> Optional[IconPainter]:
        return kind if self.enable_icon else None

    def filter_context(
        self,
        kind: IconPainter = IconPainter.FILE,
        match_type: MatchType = MatchType.FULL,
    ) -> FilterContext:
        return FilterContext(
            number=self.number,
            winwidth=self.winwidth,
            icon_painter=self.painter(kind),
            match_type=match_type,
        )

    @property
    def update_interval(self) -> float:
        return self.config.runner.update_interval_ms / 1000


def report_errors(func):
    """Print engine errors as a JSON record and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except FuzzlineError as e:
            logger.debug(f"{func.__name__} failed: {e.message}")
            println_json(e.to_payload())
            sys.exit(1)

    return wrapper


def print_snapshot(snapshot: Snapshot) -> None:
    println_json(snapshot.to_payload())


@click.group()
@click.option("--number", "-n", type=click.IntRange(min=0), help="Print only the top N results")
@click.option("--winwidth", type=click.IntRange(min=1), help="Truncate lines wider than this")
@click.option("--enable-icon", is_flag=True, help="Prepend a file type icon to each line")
@click.option("--no-cache", is_flag=True, help="Neither read nor write the output cache")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Configuration file")
@click.option("--log-level", help="Override the configured log level")
@click.pass_context
def cli(ctx, number, winwidth, enable_icon, no_cache, config_path, log_level):
    """fuzzline - fuzzy filtering backend."""
    try:
        config = Config.load(config_path)
    except ConfigError as e:
        println_json(e.to_payload())
        sys.exit(1)

    setup_logging(log_level or config.logging.level, config.logging.file)
    ctx.obj = Params(
        config=config,
        number=number,
        winwidth=winwidth,
        enable_icon=enable_icon,
        no_cache=no_cache,
    )


@cli.command(name="filter")
@click.argument("query")
@click.option("--algo", type=click.Choice([a.value for a in Algo], case_sensitive=False),
              help="Scoring algorithm (default from config)")
@click.option("--input", "input_path", type=click.Path(path_type=Path),
              help="Read candidates from a file instead of stdin")
@click.option("--cmd", help="Read candidates from a shell command (with --dynamic)")
@click.option("--cmd-dir", type=click.Path(path_type=Path), help="Working directory of --cmd")
@click.option("--match-type", type=click.Choice([m.value for m in MatchType]),
              default=MatchType.FULL.value, show_default=True)
@click.option("--bonus", "bonuses", type=click.Choice([b.value for b in Bonus]), multiple=True)
@click.option("--dynamic", is_flag=True, help="Emit snapshots while the input is still arriving")
@click.pass_obj
@report_errors
def filter_cmd(params: Params, query, algo, input_path, cmd, cmd_dir, match_type, bonuses, dynamic):
    """Fuzzy filter candidates against QUERY."""
    algo = Algo(algo.lower()) if algo else params.config.matcher.algo
    match_type = MatchType(match_type)
    bonuses = [Bonus(b) for b in bonuses]

    if cmd is not None and not dynamic:
        raise ConfigError("--cmd requires --dynamic")

    if dynamic:
        run_dynamic(params, query, algo, input_path, cmd, cmd_dir, match_type, bonuses)
        return

    source = Source.from_file(input_path) if input_path else read_stdin()
    results = sync_run(
        query,
        source,
        algo=algo,
        bonuses=bonuses,
        match_type=match_type,
        workers=params.config.runner.max_workers,
        parallel_threshold=params.config.runner.parallel_threshold,
    )

    if params.number is None:
        for result in results:
            println_json({"text": result.text, "indices": list(result.indices)})
        return

    context = params.filter_context(IconPainter.FILE, match_type)
    print_snapshot(decorate_results(results, len(results), context))


def read_stdin() -> Source:
    return Source.from_stream(click.get_binary_stream("stdin"))


def run_dynamic(
    params: Params,
    query: str,
    algo: Algo,
    input_path: Optional[Path],
    cmd: Optional[str],
    cmd_dir: Optional[Path],
    match_type: MatchType,
    bonuses: Sequence[Bonus],
) -> None:
    cache = params.cache
    if input_path is not None:
        source = Source.from_file(input_path)
    elif cmd is not None:
        spec = prepare_exec_cmd(cmd, cmd_dir or Path.cwd())
        cached = cache.lookup(spec.signature) if cache is not None else None
        if cached is not None:
            logger.debug(f"Filtering cached output {cached[0]} of {cmd!r}")
            source = Source.from_file(cached[0])
        else:
            source = Source.from_command(spec, cache_output=cache is not None)
    else:
        source = read_stdin()

    runner = DynamicRunner(
        query,
        source,
        params.filter_context(IconPainter.FILE, match_type),
        algo=algo,
        bonuses=bonuses,
        cache=cache,
        update_interval=params.update_interval,
        batch_size=params.config.runner.batch_size,
    )
    asyncio.run(runner.run(print_snapshot))


@cli.command(name="exec")
@click.argument("cmd")
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path),
              help="Write the full output here when it exceeds the threshold")
@click.option("--output-threshold", type=click.IntRange(min=0),
              help="Line count above which the output is written to a file")
@click.option("--cmd-dir", type=click.Path(path_type=Path), help="Working directory of CMD")
@click.pass_obj
@report_errors
def exec_cmd(params: Params, cmd, output, output_threshold, cmd_dir):
    """Run CMD to completion and report its output."""
    if output_threshold is None:
        output_threshold = params.config.exec.output_threshold

    light_cmd = LightCommand(
        prepare_exec_cmd(cmd, cmd_dir),
        number=params.number,
        icon_painter=params.painter(IconPainter.FILE),
        output_threshold=output_threshold,
        cache=params.cache,
        output=output,
    )
    println_json(light_cmd.execute().to_payload())


@cli.command(name="grep")
@click.argument("query")
@click.option("--grep-cmd", help="Grep command to run, e.g. 'rg --column --line-number'")
@click.option("--glob", "-g", help="Passed to the grep command as -g")
@click.option("--cmd-dir", type=click.Path(path_type=Path), help="Working directory of the grep")
@click.option("--input", "input_path", type=click.Path(path_type=Path),
              help="Filter a previously written grep output file")
@click.option("--sync", is_flag=True, help="Run --grep-cmd to completion instead of filtering")
@click.pass_obj
@report_errors
def grep_command(params: Params, query, grep_cmd, glob, cmd_dir, input_path, sync):
    """Grep the project for QUERY."""
    if sync:
        if not grep_cmd:
            raise ConfigError("--grep-cmd is required when --sync is on")
        snapshot = sync_grep(
            grep_cmd,
            query,
            glob=glob,
            cmd_dir=cmd_dir,
            number=params.number,
            winwidth=params.winwidth,
            enable_icon=params.enable_icon,
        )
        print_snapshot(snapshot)
        return

    asyncio.run(
        dyn_grep(
            query,
            params.filter_context(IconPainter.GREP),
            cmd_dir=cmd_dir,
            input=input_path,
            cache=params.cache,
            no_cache=params.no_cache,
            algo=params.config.matcher.algo,
            emit=print_snapshot,
            update_interval=params.update_interval,
            batch_size=params.config.runner.batch_size,
        )
    )


@cli.command(name="forerunner")
@click.option("--cmd-dir", type=click.Path(path_type=Path), help="Project directory")
@click.option("--output-threshold", type=click.IntRange(min=0),
              help="Line count above which the output is cached")
@click.pass_obj
@report_errors
def forerunner_cmd(params: Params, cmd_dir, output_threshold):
    """Run rg over a git project ahead of time and cache its output."""
    if output_threshold is None:
        output_threshold = params.config.grep.output_threshold

    info = forerunner(
        cmd_dir=cmd_dir,
        number=params.number,
        icon_painter=params.painter(IconPainter.GREP),
        output_threshold=output_threshold,
        cache=params.cache,
        no_cache=params.no_cache,
    )
    if info is not None:
        println_json(info.to_payload())


@cli.group(name="cache")
def cache_group():
    """Inspect the output cache."""
    pass


@cache_group.command(name="list")
@click.pass_obj
@report_errors
def cache_list(params: Params):
    """List cached command outputs."""
    cache = OutputCache(params.config.cache.directory)
    entries = cache.entries()
    if not entries:
        console.print("[yellow]Cache is empty[/yellow]")
        return

    table = Table(title=f"Cached outputs ({cache.root})")
    table.add_column("Signature", style="cyan")
    table.add_column("Lines", justify="right")
    table.add_column("Created", style="magenta")
    table.add_column("Path", no_wrap=False)

    for entry in entries:
        table.add_row(
            entry.signature[:12],
            str(entry.total),
            entry.created.strftime("%Y-%m-%d %H:%M:%S"),
            str(entry.path),
        )

    console.print(table)


@cache_group.command(name="purge")
@click.pass_obj
@report_errors
def cache_purge(params: Params):
    """Remove every cached output."""
    removed = OutputCache(params.config.cache.directory).purge()
    console.print(f"[green]Removed {removed} cached outputs[/green]")


def main():
    cli(prog_name="fzl")


if __name__ == "__main__":
    main()
