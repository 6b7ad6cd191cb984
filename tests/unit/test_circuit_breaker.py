from moodq.infrastructure.circuitbreaker import StoreCircuitBreaker
from moodq.observability.telemetry import get_counter


def test_circuit_breaker_trips_on_first_failure():
    breaker = StoreCircuitBreaker(stage="cache.insights")
    assert breaker.allow_request()

    breaker.record_failure(RuntimeError("database is locked"))

    assert breaker.is_open
    assert not breaker.allow_request()
    assert breaker.last_error == "database is locked"
    assert get_counter("cache.insights.circuit_opened") == 1
    assert get_counter("cache.insights.circuit_skip") == 1


def test_circuit_breaker_threshold():
    breaker = StoreCircuitBreaker(stage="cache.test", fail_max=3)
    breaker.record_failure("boom")
    breaker.record_failure("boom")
    assert not breaker.is_open

    breaker.record_success()
    breaker.record_failure("boom")
    breaker.record_failure("boom")
    assert not breaker.is_open

    breaker.record_failure("boom")
    assert breaker.is_open


def test_circuit_breaker_stays_open_until_reset():
    breaker = StoreCircuitBreaker(stage="cache.test")
    breaker.record_failure("unreachable")
    breaker.record_success()
    assert breaker.is_open

    breaker.record_failure("again")
    assert get_counter("cache.test.circuit_opened") == 1

    breaker.reset()
    assert not breaker.is_open
    assert breaker.last_error is None
    assert breaker.allow_request()
