import math

from mkagent.posting import (
    POST_METRICS_DEQUEUE_DELAY_SECONDS,
    POST_METRICS_INTERVAL,
    POST_METRICS_RETRY_DELAY_SECONDS,
    POST_METRICS_RETRY_MAX,
    LoopState,
    MetricValue,
    PostValue,
    build_metric_values,
    next_loop_state,
    post_delay_seconds,
)


def test_first_post_is_immediate():
    assert post_delay_seconds(LoopState.FIRST, 40, 0) == 0


def test_queued_and_error_delays():
    assert post_delay_seconds(LoopState.QUEUED, 40, 0) == POST_METRICS_DEQUEUE_DELAY_SECONDS
    assert post_delay_seconds(LoopState.HAD_ERROR, 40, 0) == POST_METRICS_RETRY_DELAY_SECONDS


def test_terminating_posts_every_second():
    assert post_delay_seconds(LoopState.TERMINATING, 40, 0) == 1


def test_default_delay_at_start_of_interval():
    host_delay = 17
    now = POST_METRICS_INTERVAL * 5
    assert post_delay_seconds(LoopState.DEFAULT, host_delay, now) == host_delay


def test_default_delay_after_host_slot_is_zero():
    host_delay = 17
    now = POST_METRICS_INTERVAL * 5 + host_delay + 5
    assert post_delay_seconds(LoopState.DEFAULT, host_delay, now) == 0


def test_default_delay_never_exceeds_host_delay():
    host_delay = 17
    for now in range(POST_METRICS_INTERVAL * 2):
        delay = post_delay_seconds(LoopState.DEFAULT, host_delay, now)
        assert 0 <= delay <= host_delay


def test_next_loop_state():
    assert next_loop_state(LoopState.FIRST, 0) is LoopState.DEFAULT
    assert next_loop_state(LoopState.HAD_ERROR, 3) is LoopState.QUEUED
    assert next_loop_state(LoopState.TERMINATING, 0) is LoopState.TERMINATING
    assert next_loop_state(LoopState.TERMINATING, 3) is LoopState.TERMINATING


def test_post_value_abandoned_after_retry_max():
    post = PostValue([MetricValue("host", "a", 1, 1.0)])
    outcomes = [post.record_failure() for _ in range(POST_METRICS_RETRY_MAX)]
    assert all(outcomes)
    assert post.record_failure() is False
    assert post.retry_count == POST_METRICS_RETRY_MAX + 1


def test_build_metric_values_skips_invalid():
    values = {"a": 1.5, "b": math.nan, "c": math.inf, "d": -math.inf}
    result = build_metric_values("hostA", {}, values, None, 1700000000)
    assert result == [MetricValue("hostA", "a", 1700000000, 1.5)]


def test_build_metric_values_uses_custom_identifier_host():
    result = build_metric_values(
        "hostA", {"app.example.com": "hostB"}, {"x": 2.0}, "app.example.com", 10
    )
    assert result == [MetricValue("hostB", "x", 10, 2.0)]


def test_build_metric_values_unknown_custom_identifier():
    result = build_metric_values("hostA", {}, {"x": 2.0}, "db.example.com", 10)
    assert result == []