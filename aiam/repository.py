"""Firestore data access for users, affirmations, playlists and cached mixes."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from .models import Affirmation, MixRecord, Playlist, UserProfile

logger = logging.getLogger("aiam.repository")


class FirestoreRepository:
    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        if self._db is None:
            from .database import get_firestore
            self._db = get_firestore()
        return self._db

    def _user(self, user_id: str):
        return self.db.collection("users").document(user_id)

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        snap = await self._user(user_id).get()
        if not snap.exists:
            return None
        return UserProfile.model_validate({"uid": user_id, **(snap.to_dict() or {})})

    async def get_playlist(self, user_id: str, playlist_id: str) -> Optional[Playlist]:
        snap = await self._user(user_id).collection("playlists").document(playlist_id).get()
        if not snap.exists:
            return None
        return Playlist.model_validate({"id": snap.id, **(snap.to_dict() or {})})

    async def get_affirmation(self, user_id: str, affirmation_id: str) -> Optional[Affirmation]:
        snap = await self._user(user_id).collection("affirmations").document(affirmation_id).get()
        if not snap.exists:
            return None
        return Affirmation.model_validate({"id": snap.id, **(snap.to_dict() or {})})

    async def get_affirmations(self, user_id: str, affirmation_ids: Sequence[str]) -> List[Optional[Affirmation]]:
        """Look up affirmations in the given order; deleted ones come back as ``None``."""
        return list(await asyncio.gather(*(self.get_affirmation(user_id, a) for a in affirmation_ids)))

    async def set_affirmation_audio(self, user_id: str, affirmation_id: str, voice_id: str, uri: str) -> None:
        from firebase_admin import firestore

        ref = self._user(user_id).collection("affirmations").document(affirmation_id)
        await ref.update({
            f"audioUrls.{voice_id}": uri,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        })

    async def deduct_credits(self, user_id: str, cost: int) -> int:
        """Atomically subtract ``cost`` (floored at zero) and return the new balance."""
        from firebase_admin import firestore
        from google.cloud.firestore import async_transactional

        ref = self._user(user_id)

        @async_transactional
        async def _deduct(transaction):
            snap = await ref.get(transaction=transaction)
            current = int((snap.to_dict() or {}).get("credits") or 0)
            remaining = max(0, current - cost)
            transaction.update(ref, {"credits": remaining, "updatedAt": firestore.SERVER_TIMESTAMP})
            return remaining

        remaining = await _deduct(self.db.transaction())
        logger.info("Deducted %s credits from %s (remaining=%s)", cost, user_id, remaining)
        return remaining

    def _mixes(self, user_id: str, playlist_id: str):
        return self._user(user_id).collection("playlists").document(playlist_id).collection("mixes")

    async def get_mix_record(self, user_id: str, playlist_id: str, key: str) -> Optional[MixRecord]:
        snap = await self._mixes(user_id, playlist_id).document(key).get()
        if not snap.exists:
            return None
        return MixRecord.model_validate(snap.to_dict() or {})

    async def save_mix_record(self, user_id: str, playlist_id: str, key: str, record: MixRecord) -> None:
        from firebase_admin import firestore

        data = record.model_dump(by_alias=True, exclude={"created_at"})
        data["createdAt"] = firestore.SERVER_TIMESTAMP
        await self._mixes(user_id, playlist_id).document(key).set(data)
