from streakline.core.metrics import Counter, MetricsRegistry, normalize_path


def test_counter_tracks_label_sets_separately():
    counter = Counter("streak_events_total", ["outcome"])
    counter.inc(labels={"outcome": "counted"})
    counter.inc(labels={"outcome": "counted"})
    counter.inc(labels={"outcome": "duplicate"})
    assert counter.value({"outcome": "counted"}) == 2
    assert counter.value({"outcome": "duplicate"}) == 1
    assert counter.value({"outcome": "rejected"}) == 0


def test_registry_reuses_counters_and_exports_text():
    registry = MetricsRegistry()
    first = registry.counter("streak_expirations_total")
    assert registry.counter("streak_expirations_total") is first
    first.inc()
    registry.counter("streak_rebuilds_total", ["source"]).inc(labels={"source": "worker"})

    text = registry.export_prometheus()
    assert "# TYPE streak_expirations_total counter" in text
    assert "streak_expirations_total 1.0" in text
    assert 'streak_rebuilds_total{source="worker"} 1.0' in text


def test_reset_clears_values():
    registry = MetricsRegistry()
    registry.counter("c").inc(amount=3)
    registry.reset()
    assert registry.counter("c").value() == 0


def test_normalize_path_collapses_ids():
    assert normalize_path("/api/streaks") == "/api/streaks"
    assert normalize_path("/users/123/streak") == "/users/:id/streak"
    assert normalize_path("/users/3f2b9c1e-1111-2222-3333-444455556666") == "/users/:id"
