from utils.failures import FailureManager, InferenceError, SensorError


def test_failures_are_counted_per_type():
    failures = FailureManager({"threshold": 2, "window_seconds": 60})
    failures.record_failure(SensorError("bad frame"))
    failures.record_failure(SensorError("bad frame"))
    failures.record_failure(InferenceError("device lost"))

    assert failures.count("SensorError") == 2
    assert failures.count("InferenceError") == 1
    assert [e.message for e in failures.get_recent_history(2)] == ["bad frame", "device lost"]


def test_threshold_burst_is_logged_once(caplog):
    failures = FailureManager({"threshold": 2, "window_seconds": 60})
    with caplog.at_level("WARNING", logger="FailureManager"):
        for _ in range(3):
            failures.record_failure(SensorError("bad frame"))
    bursts = [r for r in caplog.records if "happened 2 times" in r.getMessage()]
    assert len(bursts) == 1


def test_inference_errors_are_always_critical():
    assert InferenceError("x").critical
    assert not SensorError("x").critical


def test_unexpected_exceptions_are_counted_without_history():
    failures = FailureManager()
    failures.record_failure(ValueError("odd"))
    assert failures.count("ValueError") == 1
    assert failures.get_recent_history() == []


def test_history_is_bounded():
    failures = FailureManager({"max_history": 3})
    for i in range(5):
        failures.record_failure(SensorError(f"frame {i}"))
    assert [e.message for e in failures.get_recent_history()] == ["frame 2", "frame 3", "frame 4"]


def test_summary_counts_every_type():
    failures = FailureManager()
    failures.record_failure(SensorError("a"))
    failures.record_failure(SensorError("b"))
    failures.record_failure(InferenceError("c"))
    assert failures.summary() == {"SensorError": 2, "InferenceError": 1}
