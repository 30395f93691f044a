"""Command-line interface for resilience-core."""

import asyncio
import json
import logging
import sys
from typing import Optional

import click

from . import __version__
from .orchestrator import ResilienceConfig, ResilienceOrchestrator
from .retry import RetryExecutor
from .transport import ResilientHttpClient

PRESETS = ["default", "aggressive", "conservative", "disabled"]


@click.group()
@click.version_option(version=__version__, prog_name="resilience-core")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Retry, circuit breaker and rate limiting for HTTP API clients."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--json-output", "-j", is_flag=True, help="Output as JSON")
def presets(json_output: bool) -> None:
    """Show the preset configurations.

    Example:
        resilience-core presets
        resilience-core presets --json-output
    """
    configs = {name: ResilienceConfig.preset(name).to_dict() for name in PRESETS}

    if json_output:
        click.echo(json.dumps(configs, indent=2))
        return

    for name, config in configs.items():
        retry = config["retry"]
        breaker = config["circuit_breaker"]
        limiter = config["rate_limiter"]
        click.echo(f"[{name}]")
        click.echo(
            f"    Retry: {'on' if config['enable_retry'] else 'off'}, "
            f"max_retries={retry['max_retries']}, backoff={retry['initial_backoff']}s..{retry['max_backoff']}s"
        )
        click.echo(
            f"    Circuit: {'on' if config['enable_circuit_breaker'] else 'off'}, "
            f"failures={breaker['failure_threshold']}, successes={breaker['success_threshold']}, "
            f"open={breaker['open_timeout']}s"
        )
        click.echo(
            f"    Rate limit: {'on' if config['enable_rate_limiting'] else 'off'}, "
            f"rpm={limiter['requests_per_minute']}, burst={limiter['burst_size']}"
        )


@cli.command()
@click.option("--preset", "-p", type=click.Choice(PRESETS), default="default", help="Preset to use")
@click.option("--attempts", "-n", type=int, default=None, help="Number of retries to show")
def backoff(preset: str, attempts: Optional[int]) -> None:
    """Show the backoff schedule (without jitter).

    Example:
        resilience-core backoff --preset aggressive
    """
    config = ResilienceConfig.preset(preset).retry
    executor = RetryExecutor(config)
    count = attempts if attempts is not None else config.max_retries

    if count == 0:
        click.echo("No retries.")
        return

    total = 0.0
    for attempt in range(count):
        delay = executor.calculate_backoff(attempt)
        total += delay
        click.echo(f"Retry {attempt + 1}: {delay:.2f}s (+/- {delay * config.jitter:.2f}s), total {total:.2f}s")


@cli.command()
@click.argument("url")
@click.option("--method", "-X", default="GET", help="HTTP method")
@click.option("--preset", "-p", type=click.Choice(PRESETS), default="default", help="Preset to use")
@click.option("--header", "-H", "headers", multiple=True, help="Header as 'Name: value'")
@click.option("--json-output", "-j", is_flag=True, help="Output as JSON")
@click.pass_context
def fetch(ctx: click.Context, url: str, method: str, preset: str, headers: tuple,
          json_output: bool) -> None:
    """Send one request through the resilience stack.

    Example:
        resilience-core fetch https://example.com/health
        resilience-core -v fetch https://api.example.com/items -p aggressive
    """
    header_map = {}
    for header in headers:
        name, sep, value = header.partition(":")
        if not sep:
            raise click.BadParameter(f"Expected 'Name: value', got {header!r}", param_hint="--header")
        header_map[name.strip()] = value.strip()

    def on_retry(attempt: int, error: BaseException, delay: float) -> None:
        click.echo(f"Retry {attempt} in {delay:.2f}s: {error}", err=True)

    async def run() -> dict:
        orchestrator = ResilienceOrchestrator(ResilienceConfig.preset(preset), on_retry=on_retry)
        async with ResilientHttpClient(orchestrator=orchestrator, headers=header_map) as client:
            response = await client.request(method, url)
            return {
                "status_code": response.status_code,
                "elapsed": response.elapsed.total_seconds(),
                "bytes": len(response.content),
                "stats": orchestrator.get_stats(),
            }

    try:
        result = asyncio.run(run())
    except Exception as e:
        if ctx.obj["verbose"]:
            import traceback
            click.echo(traceback.format_exc(), err=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(result, indent=2))
    else:
        click.echo(f"[{result['status_code']}] {method.upper()} {url}")
        click.echo(f"    Elapsed: {result['elapsed']:.3f}s")
        click.echo(f"    Bytes: {result['bytes']}")


def main() -> None:
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
