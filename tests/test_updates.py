import asyncio
import json
import threading

from mzansicare.core.database import redis_client
from mzansicare.services.updates import CHANNEL_PREFIX, TicketUpdateBroker


def snapshot(status, position=1):
    return {"id": "t-1", "status": status, "position": position}


def collect(iterator):
    async def run():
        return [item async for item in iterator]
    return asyncio.run(run())


class TestBroker:

    def test_watch_until_final_status(self):
        broker = TicketUpdateBroker()

        async def scenario():
            updates = broker.watch("t-1", lambda: snapshot("waiting", 3))
            seen = [await updates.__anext__()]
            broker.publish(snapshot("waiting", 2))
            seen.append(await updates.__anext__())
            broker.publish(snapshot("called"))
            seen.append(await updates.__anext__())
            broker.publish(snapshot("served"))
            seen.append(await updates.__anext__())
            rest = [item async for item in updates]
            return seen, rest

        seen, rest = asyncio.run(scenario())

        assert [(s["status"], s["position"]) for s in seen] == [
            ("waiting", 3), ("waiting", 2), ("called", 1), ("served", 1),
        ]
        assert rest == []
        assert broker.subscriber_count("t-1") == 0

    def test_final_ticket_yields_one_snapshot(self):
        broker = TicketUpdateBroker()

        assert collect(broker.watch("t-1", lambda: snapshot("cancelled"))) == [snapshot("cancelled")]

    def test_heartbeat_when_quiet(self):
        broker = TicketUpdateBroker()

        async def scenario():
            updates = broker.watch("t-1", lambda: snapshot("waiting"), heartbeat=0.01)
            first = await updates.__anext__()
            second = await updates.__anext__()
            await updates.aclose()
            return first, second

        first, second = asyncio.run(scenario())

        assert first["status"] == "waiting"
        assert second is None
        assert broker.subscriber_count("t-1") == 0

    def test_publish_from_another_thread(self):
        broker = TicketUpdateBroker()

        async def scenario():
            updates = broker.watch("t-1", lambda: snapshot("waiting"))
            await updates.__anext__()
            threading.Thread(target=broker.publish, args=(snapshot("called"),)).start()
            update = await asyncio.wait_for(updates.__anext__(), timeout=2)
            await updates.aclose()
            return update

        assert asyncio.run(scenario())["status"] == "called"

    def test_other_tickets_are_not_delivered(self):
        broker = TicketUpdateBroker()

        async def scenario():
            updates = broker.watch("t-1", lambda: snapshot("waiting"), heartbeat=0.01)
            await updates.__anext__()
            broker.publish({"id": "t-2", "status": "called"})
            update = await updates.__anext__()
            await updates.aclose()
            return update

        assert asyncio.run(scenario()) is None

    def test_mirrored_to_redis(self):
        redis_client.flushall()
        broker = TicketUpdateBroker(redis_client)

        broker.publish(snapshot("called"))

        channel, message = redis_client.published[-1]
        assert channel == f"{CHANNEL_PREFIX}t-1"
        assert json.loads(message)["status"] == "called"
        redis_client.flushall()


class TestServiceWatch:

    def test_watchers_follow_queue_changes(self, service):
        first, _ = service.join("user-1", "jhb-central")
        second, _ = service.join("user-2", "jhb-central")

        async def scenario():
            updates = service.watch(second.id)
            seen = [await updates.__anext__()]
            service.cancel(first.id, "user-1")
            seen.append(await asyncio.wait_for(updates.__anext__(), timeout=2))
            service.call_next("jhb-central")
            seen.append(await asyncio.wait_for(updates.__anext__(), timeout=2))
            service.mark_served(second.id)
            seen.append(await asyncio.wait_for(updates.__anext__(), timeout=2))
            rest = [item async for item in updates]
            return seen, rest

        seen, rest = asyncio.run(scenario())

        assert [(s["status"], s["position"]) for s in seen] == [
            ("waiting", 2), ("waiting", 1), ("called", 1), ("served", 1),
        ]
        assert rest == []

    def test_watch_finished_ticket(self, service):
        ticket, _ = service.join("user-1", "jhb-central")
        service.cancel(ticket.id, "user-1")

        snapshots = collect(service.watch(ticket.id))

        assert len(snapshots) == 1
        assert snapshots[0]["status"] == "cancelled"
