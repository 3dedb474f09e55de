from bond_fan_bridge import metrics


def _sample(name: str, labels: dict) -> float:
    value = metrics.get_registry().get_sample_value(name, labels)
    return value or 0.0


def test_poll_outcomes_are_counted() -> None:
    before = _sample("bond_device_polls_total", {"result": "skipped"})
    metrics.record_device_poll("skipped")
    assert _sample("bond_device_polls_total", {"result": "skipped"}) == before + 1


def test_polling_gauge_tracks_device() -> None:
    metrics.set_device_polling_active("gauge-dev", True)
    assert _sample("bond_device_polling_active", {"device_id": "gauge-dev"}) == 1
    metrics.set_device_polling_active("gauge-dev", False)
    assert _sample("bond_device_polling_active", {"device_id": "gauge-dev"}) == 0


def test_latest_metrics_renders_registry() -> None:
    metrics.observe_bridge_request("GET", "ok", 0.02)
    assert b"bond_bridge_requests_total" in metrics.latest_metrics()
