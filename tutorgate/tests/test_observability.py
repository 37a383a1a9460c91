"""Metrics export, tracing spans and structured logs."""

import json
import logging

import pytest
from opentelemetry.trace import StatusCode

from tutorgate.core import tracing
from tutorgate.core.logging import JsonFormatter, latency_bucket_ms, log_event
from tutorgate.core.metrics import Counter
from tutorgate.models.subscription import BillingCycle, PlanTier


@pytest.fixture
def memory_tracing():
    tracing.setup_tracing(enabled=True, exporter_name="memory")
    yield
    tracing.setup_tracing(enabled=False)


def test_metrics_endpoint_exports_counters(client, app):
    app.state.lifecycle.create("u", PlanTier.PREMIUM, BillingCycle.MONTHLY)
    client.post("/api/chat/message", json={"message": "hi"}, headers={"X-User-Id": "u"})

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert 'subscription_transitions_total{transition="create"} 1.0' in resp.text
    assert 'gate_denied_total{reason="unentitled"} 1.0' in resp.text


def test_lifecycle_create_emits_span(memory_tracing, lifecycle):
    lifecycle.create("u", PlanTier.PRO, BillingCycle.MONTHLY)
    names = [span.name for span in tracing.exported_spans()]
    assert "subscription.create" in names


def test_spans_skip_none_attributes(memory_tracing):
    with tracing.start_span("chat.completion", {"user_id": "u", "kind": None}) as span:
        assert span is not None
    exported = tracing.exported_spans()[-1]
    assert exported.attributes["user_id"] == "u"
    assert "kind" not in exported.attributes


def test_failed_span_is_marked_as_error(memory_tracing):
    with pytest.raises(RuntimeError):
        with tracing.start_span("subscription.cancel", {"user_id": "u"}):
            raise RuntimeError("store down")

    span = tracing.exported_spans(clear=True)[-1]
    assert span.status.status_code == StatusCode.ERROR
    assert span.events[0].name == "exception"
    assert tracing.exported_spans() == []


def test_disabled_tracing_yields_none():
    tracing.setup_tracing(enabled=False)
    with tracing.start_span("noop") as span:
        assert span is None


def test_json_formatter_keeps_structured_fields():
    record = logging.LogRecord("tutorgate", logging.INFO, __file__, 1, "subscription.transition", None, None)
    record.user_id = "u"
    record.event_type = "cancel"
    record.request_id = "rid-1"

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "subscription.transition"
    assert payload["user_id"] == "u"
    assert payload["event_type"] == "cancel"
    assert payload["request_id"] == "rid-1"


def test_log_event_nests_detail_fields(caplog):
    with caplog.at_level(logging.INFO, logger="tutorgate"):
        log_event("info", "promo.redeemed", user_id="u", event_type="promo_redeemed", extra={"code": "SAVE10", "note": "x" * 600})

    record = caplog.records[-1]
    assert record.user_id == "u"
    assert record.fields["code"] == "SAVE10"
    assert record.fields["note"].endswith("...<truncated>")

    payload = json.loads(JsonFormatter().format(record))
    assert payload["event_type"] == "promo_redeemed"
    assert payload["fields"]["code"] == "SAVE10"


@pytest.mark.parametrize("latency, bucket", [(None, "unknown"), (5, "<10ms"), (50, "10-100ms"), (2500, ">=1000ms")])
def test_latency_buckets(latency, bucket):
    assert latency_bucket_ms(latency) == bucket


def test_health_endpoints(client, app):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").status_code == 200


def test_readyz_reports_unreachable_database(client, app):
    from tutorgate.core.database import build_engine

    app.state.engine = build_engine("sqlite:////nonexistent-dir/tutorgate/ready.sqlite")
    assert client.get("/readyz").status_code == 503


def test_counter_rejects_unknown_labels():
    counter = Counter("things_total", "Things.", ("kind",))
    counter.inc(kind="a")
    counter.inc(2, kind="a")
    assert counter.value(kind="a") == 3.0
    with pytest.raises(ValueError):
        counter.inc(colour="red")
    with pytest.raises(ValueError):
        counter.inc(-1, kind="a")


def test_counter_render_includes_help_and_escapes_values():
    counter = Counter("things_total", "Things.", ("kind",))
    counter.inc(kind='say "hi"')
    assert counter.render() == [
        "# HELP things_total Things.",
        "# TYPE things_total counter",
        'things_total{kind="say \\"hi\\""} 1.0',
    ]
