import asyncio
import contextlib

from crewboard.core.events import ALL_SESSIONS, EventBus


def test_publish_without_subscribers_delivers_nothing() -> None:
    bus = EventBus()
    assert bus.publish(3, {"kind": "SessionClaimed"}) == 0


def test_events_reach_session_channel_and_global_feed() -> None:
    bus = EventBus()

    async def scenario() -> tuple[int, dict, dict, dict]:
        session_stream = bus.subscribe(5)
        other_stream = bus.subscribe(6)
        all_stream = bus.subscribe(ALL_SESSIONS)
        session_next = asyncio.ensure_future(session_stream.__anext__())
        other_next = asyncio.ensure_future(other_stream.__anext__())
        all_next = asyncio.ensure_future(all_stream.__anext__())
        for _ in range(3):
            await asyncio.sleep(0)

        delivered = await asyncio.to_thread(bus.publish, 5, {"kind": "SessionClaimed", "session_id": 5})
        template_delivered = await asyncio.to_thread(bus.publish, None, {"kind": "TemplateCreated"})
        first = await asyncio.wait_for(session_next, timeout=1)
        second = await asyncio.wait_for(all_next, timeout=1)
        third = await asyncio.wait_for(all_stream.__anext__(), timeout=1)

        assert not other_next.done()
        other_next.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await other_next
        await session_stream.aclose()
        await all_stream.aclose()
        await other_stream.aclose()
        return delivered + template_delivered, first, second, third

    delivered, first, second, third = asyncio.run(scenario())
    assert delivered == 3
    assert first["kind"] == "SessionClaimed"
    assert second["kind"] == "SessionClaimed"
    assert third["kind"] == "TemplateCreated"
    assert bus.subscriber_count(5) == 0
    assert bus.subscriber_count(ALL_SESSIONS) == 0
