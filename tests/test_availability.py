import asyncio

from conftest import BASE_A, BASE_B, json_response

from storysync.workflows.availability import AvailabilityTracker
from storysync.workflows.status import StatusReporter


def test_first_reachable_base_marks_available(store, transport):
    transport.route(f"{BASE_A}/posts", json_response({}, status=503))
    transport.route(f"{BASE_B}/posts", json_response([{"id": 1}]))
    tracker = AvailabilityTracker((BASE_A, BASE_B), store, transport, timeout=10)

    assert asyncio.run(tracker.is_available()) is True

    record = asyncio.run(tracker.last_record())
    assert record.available is True
    assert record.source == BASE_B
    assert transport.calls[0] == (f"{BASE_A}/posts", {"per_page": "1", "_fields": "id"})
    status = asyncio.run(StatusReporter(store).read())["sync_status"]
    assert status["type"] == "api_available"


def test_fresh_verdict_skips_network(store, transport, clock):
    transport.route(f"{BASE_A}/posts", json_response([]))
    tracker = AvailabilityTracker((BASE_A,), store, transport)

    asyncio.run(tracker.is_available())
    clock.advance(299)
    asyncio.run(tracker.is_available())

    assert len(transport.calls) == 1

    clock.advance(2)
    asyncio.run(tracker.is_available())

    assert len(transport.calls) == 2


def test_all_bases_failing_marks_unavailable(store, transport):
    transport.route(f"{BASE_A}/posts", asyncio.TimeoutError())
    tracker = AvailabilityTracker((BASE_A, BASE_B), store, transport)

    assert asyncio.run(tracker.is_available()) is False

    record = asyncio.run(tracker.last_record())
    assert record.available is False
    assert record.error.startswith("ClientConnectionError")
    assert [url for url, _ in transport.calls] == [f"{BASE_A}/posts", f"{BASE_B}/posts"]
    status = asyncio.run(StatusReporter(store).read())["sync_status"]
    assert status["status"] == "warning"
    assert status["type"] == "api_unavailable"


def test_force_reprobes_within_ttl(store, transport):
    transport.route(f"{BASE_A}/posts", json_response([]))
    tracker = AvailabilityTracker((BASE_A,), store, transport)

    asyncio.run(tracker.is_available())
    asyncio.run(tracker.is_available(force=True))

    assert tracker.probe_count == 2
