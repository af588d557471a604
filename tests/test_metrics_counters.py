from Metaport.metrics import get_counter, get_counters, inc_counter, observe_histogram, reset_counters


def test_counters_accumulate_and_reset():
    inc_counter("importer.runs")
    inc_counter("importer.runs", 2)
    assert get_counter("importer.runs") == 3
    assert get_counter("never.touched") == 0
    reset_counters()
    assert get_counter("importer.runs") == 0


def test_histogram_buckets_flattened():
    observe_histogram("importer.duration_ms", 5)
    observe_histogram("importer.duration_ms", 250)
    observe_histogram("importer.duration_ms", 10_000_000)
    counters = get_counters()
    assert counters["histo.importer.duration_ms.le_10"] == 1
    assert counters["histo.importer.duration_ms.le_1000"] == 1
    assert counters["histo.importer.duration_ms.gt_3600000"] == 1
    assert counters["histo.importer.duration_ms.count"] == 3
    assert counters["histo.importer.duration_ms.sum"] == 10_000_255
