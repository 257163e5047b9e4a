"""Click CLI group: ask, providers, switch, usage and serve commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click

from modelgate.config import get_settings
from modelgate.errors import GatewayError, describe_error
from modelgate.gateway.orchestrator import Gateway
from modelgate.logging import configure_logging
from modelgate.providers.base import ChatMessage, ChatOptions

T = TypeVar("T")


def build_gateway() -> Gateway:
    return Gateway.from_settings(get_settings())


def _run(work: Callable[[Gateway], Awaitable[T]]) -> T:
    gateway = build_gateway()

    async def _main() -> T:
        try:
            return await work(gateway)
        finally:
            await gateway.cleanup()

    try:
        return asyncio.run(_main())
    except GatewayError as exc:
        info = describe_error(exc, gateway.active_provider_name)
        raise click.ClickException(f"{info.user_message} ({exc})") from exc


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this invocation.")
def cli(log_level: str | None) -> None:
    """modelgate: one entrypoint for Gemini, OpenAI and Ollama."""
    configure_logging(log_level or get_settings().log_level, json_output=False)


@cli.command()
@click.argument("message")
@click.option("--provider", type=str, default=None, help="Provider to activate first.")
@click.option("--system", "system_prompt", type=str, default=None, help="System prompt.")
@click.option("--thinking", is_flag=True, help="Use the provider's thinking mode.")
@click.option("--stream/--no-stream", default=False, show_default=True)
@click.option("--temperature", type=float, default=0.7, show_default=True)
@click.option("--max-tokens", type=int, default=2000, show_default=True)
@click.option("--json", "json_output", is_flag=True, help="Print structured JSON response.")
def ask(
    message: str,
    provider: str | None,
    system_prompt: str | None,
    thinking: bool,
    stream: bool,
    temperature: float,
    max_tokens: int,
    json_output: bool,
) -> None:
    """Send one message through the gateway and print the reply."""
    messages: list[ChatMessage] = []
    if system_prompt:
        messages.append(ChatMessage(role="system", content=system_prompt))
    messages.append(ChatMessage(role="user", content=message))
    options = ChatOptions(temperature=temperature, max_tokens=max_tokens, thinking_mode=thinking)

    async def _ask(gateway: Gateway) -> dict[str, object]:
        await gateway.initialize(default=provider)
        if stream and not json_output:
            result = await gateway.stream_chat(
                messages, lambda delta: click.echo(delta, nl=False), options
            )
            click.echo()
        else:
            result = await gateway.chat(messages, options)
        return result.to_dict()

    payload = _run(_ask)
    if json_output:
        click.echo(json.dumps(payload, indent=2))
        return
    if not stream:
        if thinking and payload.get("thinking"):
            click.echo(f"thinking > {payload['thinking']}\n")
        click.echo(payload.get("answer") or payload["content"])
    click.echo(
        f"[{payload['provider']}/{payload['model']}] tokens={payload['tokens']} "
        f"cost=${float(payload['cost']):.6f}",
        err=True,
    )


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Print structured JSON output.")
def providers(json_output: bool) -> None:
    """List registered providers with their health."""

    async def _providers(gateway: Gateway) -> list[dict[str, object]]:
        gateway.register_defaults()
        statuses = await gateway.check_all_health()
        rows = gateway.list_providers()
        for row in rows:
            status = statuses[str(row["name"])]
            row["available"] = status.available
            row["message"] = status.message
        return rows

    rows = _run(_providers)
    if json_output:
        click.echo(json.dumps(rows, indent=2))
        return
    for row in rows:
        mode = "online" if row["online"] else "offline"
        state = "ok" if row["available"] else "down"
        click.echo(f"{row['name']:<8} {mode:<8} {state:<5} {row['message']}")


@cli.command()
@click.argument("name")
def switch(name: str) -> None:
    """Health-check NAME and report which provider would serve requests."""

    async def _switch(gateway: Gateway) -> dict[str, object]:
        gateway.register_defaults()
        result = await gateway.switch_provider(name)
        return result.to_dict()

    payload = _run(_switch)
    if payload["fallback"]:
        click.echo(f"{name} unavailable; fell back to {payload['provider']} ({payload['mode']})")
    else:
        click.echo(f"active provider: {payload['provider']} ({payload['mode']})")


@cli.command()
@click.option("--days", type=int, default=7, show_default=True, help="History window.")
@click.option("--json", "json_output", is_flag=True, help="Print structured JSON output.")
def usage(days: int, json_output: bool) -> None:
    """Print token and cost usage from the ledger."""
    if days <= 0:
        raise click.ClickException("--days must be > 0")
    gateway = build_gateway()
    ledger = gateway.ledger
    report = {
        "today": ledger.get_daily_stats().to_dict(),
        "percent_used": ledger.get_daily_usage_percent(),
        "history": [record.to_dict() for record in ledger.get_historical_stats(days)],
        "total": ledger.get_total_stats().to_dict(),
        "savings": ledger.get_cost_savings().to_dict(),
    }
    if json_output:
        click.echo(json.dumps(report, indent=2))
        return
    today = report["today"]["total"]
    click.echo(
        f"today: tokens={today['tokens']} cost=${today['cost']:.4f} "
        f"requests={today['requests']} ({report['percent_used']}% of daily limit)"
    )
    for record in report["history"]:
        totals = record["total"]
        click.echo(f"  {record['date']}  tokens={totals['tokens']:>8}  cost=${totals['cost']:.4f}")
    savings = report["savings"]
    click.echo(f"offline savings: ${savings['saved_by_cost']:.4f}")


@cli.command()
@click.option("--host", type=str, default=None, help="Bind host (default: BIND_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: BIND_PORT).")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "modelgate.main:app",
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    cli()
