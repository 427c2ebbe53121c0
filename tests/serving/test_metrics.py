# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for serving metrics tracking."""

import time

from logitloom.serving.metrics.core import RequestMetrics, ServingMetrics


class TestRequestMetrics:

    def test_defaults_are_zero(self) -> None:
        m = RequestMetrics()
        assert m.prompt_tokens == 0
        assert m.generated_tokens == 0
        assert m.total_time_ms == 0.0
        assert m.finish_reason == ""
        assert m.streamed is False


class TestServingMetrics:

    def test_starts_empty(self) -> None:
        metrics = ServingMetrics()
        assert metrics.total_requests == 0
        assert metrics.average_tokens_per_second() == 0.0
        assert metrics.average_ms_per_token() == 0.0
        assert metrics.peak_memory_mb() == 0.0

    def test_averages_across_requests(self) -> None:
        metrics = ServingMetrics()
        metrics.record(RequestMetrics(tokens_per_second=100.0, peak_memory_mb=10.0))
        metrics.record(RequestMetrics(tokens_per_second=300.0, peak_memory_mb=30.0))

        assert metrics.total_requests == 2
        assert metrics.average_tokens_per_second() == 200.0
        assert metrics.average_ms_per_token() == 5.0
        assert metrics.peak_memory_mb() == 30.0

    def test_counts_finish_reasons(self) -> None:
        metrics = ServingMetrics()
        for reason in ["eos", "length", "eos", "stop_sequence"]:
            metrics.record(RequestMetrics(finish_reason=reason))
        assert metrics.finish_reasons() == {"eos": 2, "length": 1, "stop_sequence": 1}

    def test_summary_has_expected_keys(self) -> None:
        metrics = ServingMetrics()
        metrics.record(RequestMetrics(tokens_per_second=50.0, finish_reason="eos"))
        summary = metrics.summary()

        assert summary["total_requests"] == 1
        assert summary["avg_tokens_per_second"] == 50.0
        assert summary["finish_reasons"] == {"eos": 1}
        assert "uptime_seconds" in summary

    def test_uptime_increases(self) -> None:
        metrics = ServingMetrics()
        first = metrics.uptime_seconds
        time.sleep(0.01)
        assert metrics.uptime_seconds > first

    def test_gpu_memory_is_non_negative(self) -> None:
        assert ServingMetrics.get_gpu_memory_mb() >= 0.0
