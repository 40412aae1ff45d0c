import asyncio

from services.firestore_service import FirestoreService, get_firestore_service


class FakeDoc:
    def __init__(self, store, key):
        self.store = store
        self.key = key

    def set(self, data):
        self.store[self.key] = data

    def delete(self):
        self.store.pop(self.key, None)


class FakeCollection:
    def __init__(self, store):
        self.store = store

    def document(self, key):
        return FakeDoc(self.store, key)


class FakeClient:
    def __init__(self, broken=False):
        self.store = {}
        self.broken = broken

    def collection(self, name):
        if self.broken:
            raise RuntimeError("firestore unavailable")
        assert name == "rooms"
        return FakeCollection(self.store)


def test_save_then_delete():
    client = FakeClient()
    service = FirestoreService(client)

    asyncio.run(service.save_room("R1", {"id": "R1", "status": "waiting"}))
    assert client.store["R1"]["status"] == "waiting"
    assert "saved_at" in client.store["R1"]

    asyncio.run(service.delete_room("R1"))
    assert client.store == {}


def test_failures_are_swallowed():
    service = FirestoreService(FakeClient(broken=True))

    async def scenario():
        await service.save_room("R1", {"id": "R1"})
        await service.delete_room("R1")

    asyncio.run(scenario())


def test_disabled_by_default():
    assert get_firestore_service() is None
