"""
Tests for the kafka-query CLI.

Parsing helpers are tested directly; commands are invoked through Typer's
CliRunner with the service call replaced, so no network access happens.
"""

import json

import pytest
import typer
from typer.testing import CliRunner

from kafka_query.aggregation import score_health
from kafka_query.cli import commands
from kafka_query.cli.main import app
from kafka_query.cli.output import format_value, result_to_dict, value_to_json
from kafka_query.cli.parsing import parse_filter, parse_kind, parse_metric
from kafka_query.exceptions import PermissionDeniedError
from kafka_query.query import AggregationKind, FilterOperator
from kafka_query.types import AggregatedResult, EntityKind, Histogram, MetricError, MetricResult

runner = CliRunner()


@pytest.fixture
def captured(monkeypatch):
    """Replace the service call; returns the list of requests made."""
    requests = []

    def install(result: MetricResult):
        def fake_run(request):
            requests.append(request)
            return result

        monkeypatch.setattr(commands, "_run", fake_run)
        return requests

    return install


# =============================================================================
# Parsing
# =============================================================================


class TestParsing:
    """Tests for option value parsing."""

    @pytest.mark.parametrize(
        "value,kind",
        [
            ("cluster", EntityKind.CLUSTER),
            ("Broker", EntityKind.BROKER),
            ("consumer-group", EntityKind.CONSUMER_GROUP),
            ("consumer_group", EntityKind.CONSUMER_GROUP),
        ],
    )
    def test_parse_kind(self, value, kind):
        assert parse_kind(value) is kind

    def test_unknown_kind(self):
        with pytest.raises(typer.BadParameter):
            parse_kind("partition")

    def test_parse_metric(self):
        agg = parse_metric("average:cpuPercent")
        assert agg.kind is AggregationKind.AVERAGE
        assert agg.field == "cpuPercent"
        assert agg.name == "average_cpuPercent"

    def test_parse_metric_with_alias(self):
        assert parse_metric("max:diskUsedPercent:disk").name == "disk"

    def test_parse_percentile(self):
        agg = parse_metric("p95:requestLatencyMs")
        assert agg.kind is AggregationKind.PERCENTILE
        assert agg.percentile == 95.0

    @pytest.mark.parametrize("value", ["cpuPercent", "median:cpu", "average:", "a:b:c:d"])
    def test_bad_metric(self, value):
        with pytest.raises(typer.BadParameter):
            parse_metric(value)

    def test_parse_filters(self):
        eq = parse_filter("clusterName=prod")
        assert (eq.field, eq.operator, eq.value) == ("clusterName", FilterOperator.EQ, "prod")

        ne = parse_filter("clusterName!=prod")
        assert ne.operator is FilterOperator.NE

        in_ = parse_filter("topic=orders, payments")
        assert (in_.operator, in_.value) == (FilterOperator.IN, ("orders", "payments"))

        not_in = parse_filter("topic!=a,b")
        assert not_in.operator is FilterOperator.NOT_IN

    @pytest.mark.parametrize("value", ["clusterName", "=prod", "clusterName="])
    def test_bad_filter(self, value):
        with pytest.raises(typer.BadParameter):
            parse_filter(value)


# =============================================================================
# Output
# =============================================================================


class TestOutput:
    """Tests for rendering helpers."""

    def test_format_value(self):
        assert format_value(1234.5) == "1,234.50"
        assert format_value(Histogram(edges=(0.0, 1.0, 2.0), counts=(3, 4))) == "3 4"
        assert "boom" in format_value(MetricError(alias="x", message="boom"))

    def test_value_to_json(self):
        assert value_to_json(2.0) == 2.0
        assert value_to_json(MetricError(alias="x", message="boom")) == {
            "error": "boom",
            "type": "AggregationError",
        }

    def test_result_to_dict_is_serializable(self):
        result = AggregatedResult(
            metrics={"cpu": 40.0},
            groups={("broker-1",): {"cpu": 40.0}},
            sample_count=2,
            health=score_health({"cpu_percent": 95.0}),
        )

        data = json.loads(json.dumps(result_to_dict(result)))

        assert data["metrics"] == {"cpu": 40.0}
        assert data["groups"] == [{"facets": ["broker-1"], "metrics": {"cpu": 40.0}}]
        assert data["health"]["status"] == "excellent"
        assert data["health"]["issues"][0]["metric"] == "cpu_percent"


# =============================================================================
# Commands
# =============================================================================


class TestCommands:
    """Tests for CLI commands with the service call replaced."""

    def test_health_json(self, captured):
        health = score_health({"active_controller": 1, "cpu_percent": 50.0})
        requests = captured(MetricResult(data=AggregatedResult(metrics={}, health=health)))

        result = runner.invoke(app, ["health", "--cluster", "prod-kafka", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["overall"] == 100.0
        request = requests[0]
        assert request.include_health
        assert request.entity_kind is EntityKind.CLUSTER
        assert request.filters[0].value == "prod-kafka"

    def test_health_table(self, captured):
        captured(MetricResult(data=AggregatedResult(metrics={}, health=score_health({}))))

        result = runner.invoke(app, ["health", "--cluster", "prod-kafka"])

        assert result.exit_code == 0
        assert "EXCELLENT" in result.stdout

    def test_error_exits_non_zero(self, captured):
        captured(MetricResult(error=PermissionDeniedError("forbidden")))

        result = runner.invoke(app, ["health", "--cluster", "prod-kafka"])

        assert result.exit_code == 1

    def test_metrics_builds_request(self, captured):
        requests = captured(MetricResult(data=AggregatedResult(metrics={"cpu": 40.0}, sample_count=1)))

        result = runner.invoke(
            app,
            [
                "metrics",
                "--kind", "broker",
                "--metric", "average:cpuPercent:cpu",
                "--metric", "p99:produceRequestLatencyMs",
                "--filter", "clusterName=prod-kafka",
                "--group-by", "entityName",
                "--since", "600",
                "--json",
            ],
        )

        assert result.exit_code == 0
        assert json.loads(result.stdout)["metrics"] == {"cpu": 40.0}
        request = requests[0]
        assert [m.name for m in request.metrics] == ["cpu", "p99_produceRequestLatencyMs"]
        assert request.group_by == ("entityName",)
        assert request.time_range.duration_seconds == 600

    def test_bad_metric_is_a_usage_error(self, captured):
        captured(MetricResult())

        result = runner.invoke(app, ["metrics", "--kind", "broker", "--metric", "median:cpu"])

        assert result.exit_code != 0
