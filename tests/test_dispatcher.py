import asyncio
import threading

import pytest

from app.realtime.dispatcher import CLOSE, MESSAGE_CREATED, MEMBER_LEFT, SseDispatcher


def _drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class TestSseDispatcher:
    def test_publish_before_init_is_dropped(self):
        d = SseDispatcher()
        assert not d.ready
        d.publish(1, MESSAGE_CREATED, {"id": 1})  # logs and returns

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            SseDispatcher().publish(1, "typing", {})

    def test_fan_out_to_current_subscribers_only(self):
        async def scenario():
            d = SseDispatcher()
            d.init(asyncio.get_running_loop())
            a = d.subscribe(7, user_id=1)
            b = d.subscribe(7, user_id=2)
            other = d.subscribe(8, user_id=3)

            d.publish(7, MESSAGE_CREATED, {"id": 10})
            await asyncio.sleep(0)
            late = d.subscribe(7, user_id=4)
            await asyncio.sleep(0)
            return a, b, other, late

        a, b, other, late = asyncio.run(scenario())
        expected = [{"event": MESSAGE_CREATED, "data": {"id": 10}}]
        assert _drain(a.queue) == expected
        assert _drain(b.queue) == expected
        assert _drain(other.queue) == []
        assert _drain(late.queue) == []

    def test_publish_from_worker_thread(self):
        async def scenario():
            d = SseDispatcher()
            d.init(asyncio.get_running_loop())
            sub = d.subscribe(1, user_id=1)

            worker = threading.Thread(target=d.publish, args=(1, MEMBER_LEFT, {"user": {"id": 2}}))
            worker.start()
            worker.join()
            return await asyncio.wait_for(sub.queue.get(), timeout=1)

        assert asyncio.run(scenario()) == {"event": MEMBER_LEFT, "data": {"user": {"id": 2}}}

    def test_slow_subscriber_dropped(self):
        async def scenario():
            d = SseDispatcher(queue_size=1)
            d.init(asyncio.get_running_loop())
            slow = d.subscribe(1, user_id=1)

            d.publish(1, MESSAGE_CREATED, {"id": 1})
            d.publish(1, MESSAGE_CREATED, {"id": 2})
            await asyncio.sleep(0)
            return d, slow

        d, slow = asyncio.run(scenario())
        assert d.subscriber_count(1) == 0
        assert _drain(slow.queue) == [CLOSE]

    def test_revoke_one_user(self):
        async def scenario():
            d = SseDispatcher()
            d.init(asyncio.get_running_loop())
            kicked = d.subscribe(1, user_id=1)
            stays = d.subscribe(1, user_id=2)

            d.revoke(1, user_id=1)
            await asyncio.sleep(0)
            return d, kicked, stays

        d, kicked, stays = asyncio.run(scenario())
        assert _drain(kicked.queue) == [CLOSE]
        assert _drain(stays.queue) == []
        assert d.subscriber_count(1) == 1

    def test_unsubscribe(self):
        async def scenario():
            d = SseDispatcher()
            d.init(asyncio.get_running_loop())
            sub = d.subscribe(1, user_id=1)
            d.unsubscribe(sub)
            d.unsubscribe(sub)
            return d

        assert asyncio.run(scenario()).subscriber_count(1) == 0
