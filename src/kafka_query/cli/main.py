"""Kafka query CLI - health scores and metrics for Kafka clusters."""

import logging

import typer

from kafka_query.cli.commands import entities, health, metrics

app = typer.Typer(
    name="kafka-query",
    help="Query health and metrics of Kafka clusters",
    no_args_is_help=True,
)


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


app.command("health")(health)
app.command("entities")(entities)
app.command("metrics")(metrics)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
