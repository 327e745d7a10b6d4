"""CLI commands for smart-metrics."""

from pathlib import Path

import click


def _load_config(path: Path | None):
    """Load and validate config, turning ConfigError into a CLI error."""
    from smart_metrics.config import Config, ConfigError

    try:
        cfg = Config.load(path)
        cfg.validate()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    return cfg


@click.group()
@click.version_option(package_name="smart-metrics")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Config file (default: ~/.config/smart-metrics/config.toml)",
)
@click.pass_context
def main(ctx, config_path: Path | None) -> None:
    """Weighted CPU usage, memory pressure and trend prediction."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option("--interval", "-i", default=1.0, show_default=True, help="Seconds between samples")
@click.option("--json", "as_json", is_flag=True, help="Print the snapshot as JSON")
@click.pass_context
def sample(ctx, interval: float, as_json: bool) -> None:
    """Take one snapshot (two samples, INTERVAL seconds apart)."""
    import asyncio

    from smart_metrics import logging as console
    from smart_metrics.collector import create_collector
    from smart_metrics.engine import SmartMetricsEngine
    from smart_metrics.sampler import take_snapshot

    if interval <= 0:
        raise click.BadParameter("must be > 0", param_hint="--interval")

    cfg = _load_config(ctx.obj["config_path"])
    console.configure(cfg)

    collector = create_collector(cfg)
    engine = SmartMetricsEngine(cfg)
    snapshot = asyncio.run(take_snapshot(collector, engine, interval))

    if as_json:
        click.echo(snapshot.to_json())
    else:
        console.snapshot_summary(snapshot)


@main.command()
@click.option("--interval", "-i", type=float, default=None, help="Override sample interval")
@click.option("--count", "-n", type=int, default=None, help="Stop after N cycles")
@click.option("--json", "as_json", is_flag=True, help="Print one JSON object per cycle")
@click.pass_context
def watch(ctx, interval: float | None, count: int | None, as_json: bool) -> None:
    """Sample continuously, one line per cycle."""
    import asyncio

    from smart_metrics import logging as console
    from smart_metrics.sampler import run_sampler

    cfg = _load_config(ctx.obj["config_path"])
    if interval is not None:
        if interval <= 0:
            raise click.BadParameter("must be > 0", param_hint="--interval")
        cfg.collector.sample_interval = interval
    if count is not None and count < 1:
        raise click.BadParameter("must be >= 1", param_hint="--count")

    console.configure(cfg)

    if as_json:

        def on_snapshot(snapshot) -> None:
            click.echo(snapshot.to_json())

    else:
        on_snapshot = console.snapshot_line

    asyncio.run(
        run_sampler(cfg, count=count, on_snapshot=on_snapshot, console_output=not as_json)
    )


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def config_init(ctx, force: bool) -> None:
    """Write a config file with all defaults."""
    from smart_metrics import logging as console
    from smart_metrics.config import Config

    cfg = Config()
    path = ctx.obj["config_path"] or cfg.config_path
    if path.exists() and not force:
        console.config_exists(str(path))
        ctx.exit(1)
    cfg.save(path)
    console.config_created(str(path))


@config.command("show")
@click.pass_context
def config_show(ctx) -> None:
    """Print the effective configuration as TOML."""
    cfg = _load_config(ctx.obj["config_path"])
    path = ctx.obj["config_path"] or cfg.config_path

    click.echo(f"# Config file: {path}")
    click.echo(f"# Exists: {path.exists()}")
    click.echo(cfg.to_toml())


if __name__ == "__main__":
    main()
