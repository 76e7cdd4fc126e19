from __future__ import annotations

import pytest

from libs.core import tracing


class _RecordingSpan:
    def __init__(self) -> None:
        self.attributes: dict = {}

    def set_attribute(self, key, value):  # type: ignore[no-untyped-def]
        self.attributes[key] = value


def test_start_span_without_exporter():
    with tracing.start_span("test.span", attributes={"a": 1, "b": True, "c": None}) as span:
        tracing.set_span_attributes(
            span,
            {
                "text": "value",
                "number": 2,
                "bool": False,
                "list": ["x", 1, {"ignored": True}],
            },
        )


def test_start_span_reraises_errors():
    with pytest.raises(ValueError):
        with tracing.start_span("test.failing"):
            raise ValueError("boom")


def test_set_span_attributes_normalizes_values():
    span = _RecordingSpan()
    tracing.set_span_attributes(
        span,
        {"none": None, "": "skipped", "list": ["x", 1, {"ignored": True}], "empty": [{}], "obj": object},
    )
    assert span.attributes["list"] == ["x", 1]
    assert "none" not in span.attributes
    assert "empty" not in span.attributes
    assert "" not in span.attributes
    assert span.attributes["obj"] == str(object)


def test_configure_tracing_disabled_without_endpoint(monkeypatch):
    monkeypatch.setattr(tracing, "_TRACING_CONFIGURED", False)
    assert tracing.configure_tracing("tailor") is False
    assert tracing.configure_tracing("tailor", "   ") is False


def test_normalize_otlp_endpoint_adds_traces_path():
    assert (
        tracing._normalize_otlp_traces_endpoint("http://jaeger:4318")
        == "http://jaeger:4318/v1/traces"
    )
    assert (
        tracing._normalize_otlp_traces_endpoint("http://jaeger:4318/")
        == "http://jaeger:4318/v1/traces"
    )
    assert (
        tracing._normalize_otlp_traces_endpoint("http://jaeger:4318/v1/traces")
        == "http://jaeger:4318/v1/traces"
    )
