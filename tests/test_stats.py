"""Tests for quality_worker.observability.stats."""

import threading

from quality_worker.observability.stats import ProcessingStats, success_rate


class TestProcessingStats:
    """Tests for counters, in-flight tracking and history."""

    def test_initial_snapshot(self) -> None:
        snapshot = ProcessingStats().snapshot()

        assert snapshot["totalProcessed"] == 0
        assert snapshot["successRate"] == "0%"
        assert snapshot["lastMessageTime"] is None
        assert snapshot["processingMessages"] == []
        assert snapshot["messageHistory"] == []

    def test_start_tracks_in_flight(self) -> None:
        stats = ProcessingStats()
        stats.start("m-1", "call-1.mp3")

        in_flight = stats.snapshot()["processingMessages"]

        assert in_flight[0]["messageId"] == "m-1"
        assert in_flight[0]["fileName"] == "call-1.mp3"

    def test_success_updates_counters_and_history(self) -> None:
        stats = ProcessingStats()
        stats.start("m-1", "call-1.mp3")

        elapsed = stats.record_success("m-1", "call-1.mp3")

        snapshot = stats.snapshot()
        assert elapsed >= 0
        assert snapshot["totalProcessed"] == 1
        assert snapshot["totalSuccess"] == 1
        assert snapshot["successRate"] == "100.00%"
        assert snapshot["processingMessages"] == []
        assert snapshot["messageHistory"][0]["status"] == "success"
        assert "error" not in snapshot["messageHistory"][0]
        assert snapshot["lastMessageTime"] is not None

    def test_failure_records_error(self) -> None:
        stats = ProcessingStats()
        stats.start("m-1", "call-1.mp3")

        stats.record_failure("m-1", None, "No associated record")

        entry = stats.snapshot()["messageHistory"][0]
        assert entry["status"] == "failed"
        assert entry["fileName"] == "call-1.mp3"
        assert entry["error"] == "No associated record"
        assert stats.total_failed == 1

    def test_release_does_not_count(self) -> None:
        stats = ProcessingStats()
        stats.start("m-1", "call-1.mp3")

        stats.release("m-1")

        assert stats.total_processed == 0
        assert stats.snapshot()["processingMessages"] == []

    def test_history_bounded_and_ordered(self) -> None:
        stats = ProcessingStats(history_size=50)
        for i in range(60):
            stats.start(f"m-{i}", f"f-{i}.mp3")
            stats.record_success(f"m-{i}", f"f-{i}.mp3")

        history = stats.snapshot()["messageHistory"]

        assert len(history) == 50
        assert history[0]["messageId"] == "m-10"
        assert history[-1]["messageId"] == "m-59"
        assert stats.total_processed == 60

    def test_concurrent_updates_are_consistent(self) -> None:
        stats = ProcessingStats()
        successes, failures = 40, 25

        def run(index: int) -> None:
            message_id = f"m-{index}"
            stats.start(message_id, f"{message_id}.mp3")
            if index < successes:
                stats.record_success(message_id, f"{message_id}.mp3")
            else:
                stats.record_failure(message_id, f"{message_id}.mp3", "invalid")

        threads = [threading.Thread(target=run, args=(i,)) for i in range(successes + failures)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = stats.snapshot()
        assert snapshot["totalProcessed"] == successes + failures
        assert snapshot["totalSuccess"] == successes
        assert snapshot["totalFailed"] == failures
        assert len(snapshot["messageHistory"]) == 50
        assert snapshot["processingMessages"] == []


class TestSuccessRate:
    def test_formats_two_decimals(self) -> None:
        assert success_rate(2, 3) == "66.67%"

    def test_zero_processed(self) -> None:
        assert success_rate(0, 0) == "0%"
