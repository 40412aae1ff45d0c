import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from config import settings

logger = logging.getLogger(__name__)


class FirestoreService:
    """
    Best-effort room snapshots in Firestore, one document per room.
    Sync client calls run in the default thread pool so the event loop never
    blocks. Writes that fail are logged and dropped: a snapshot is never
    allowed to interrupt a game.
    """

    def __init__(self, client=None):
        if client is None:
            if settings.firestore_emulator_host:
                os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
            # Lazy import so the service can be instantiated before GCP creds exist
            from google.cloud import firestore
            client = firestore.Client(project=settings.google_cloud_project or None)
        self.db = client

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    def _room_ref(self, room_id: str):
        return self.db.collection("rooms").document(room_id)

    # ── Snapshots ─────────────────────────────────────────────────────────────

    async def save_room(self, room_id: str, snapshot: Dict[str, Any]) -> None:
        data = dict(snapshot)
        data["saved_at"] = datetime.now(timezone.utc).isoformat()
        try:
            await self._run(lambda: self._room_ref(room_id).set(data))
        except Exception:
            logger.warning("[%s] Could not save room snapshot", room_id, exc_info=True)

    async def delete_room(self, room_id: str) -> None:
        try:
            await self._run(lambda: self._room_ref(room_id).delete())
        except Exception:
            logger.warning("[%s] Could not delete room snapshot", room_id, exc_info=True)


_firestore_service: Optional["FirestoreService"] = None


def get_firestore_service() -> Optional["FirestoreService"]:
    """Lazy singleton — None unless snapshots are enabled.
    Initialised on first call, not at import time, so missing credentials
    cannot crash the app before FastAPI boots.
    """
    global _firestore_service
    if not settings.snapshot_enabled:
        return None
    if _firestore_service is None:
        _firestore_service = FirestoreService()
    return _firestore_service
