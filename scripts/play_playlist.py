#!/usr/bin/env python3
"""Play a playlist in the terminal through ffplay.

Missing narrations are generated (and cached) as playback reaches them.
Commands on stdin: p = pause, r = resume, q = stop.

    python scripts/play_playlist.py --user UID --playlist PLAYLIST_ID [--voice VOICE_ID] [--start N]
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
import tempfile
from typing import Optional

from aiam.config import settings
from aiam.errors import AiamError, PlaylistNotFound
from aiam.models import UserProfile
from aiam.repository import FirestoreRepository
from clients.storage_client import StorageClient
from services.audio_cache import AudioCache
from services.playback_engine import AudioPlayer, Clip, PlaybackSession
from services.voice_service import VoiceService, default_voice

logger = logging.getLogger("aiam.playback")


class FfplayPlayer(AudioPlayer):
    """One ffplay process per clip; pause/resume by stopping and continuing it."""

    def __init__(self, storage: StorageClient):
        self.storage = storage
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._paused = False

    async def _source(self, clip: Clip):
        if clip.data is not None:
            tmp = tempfile.NamedTemporaryFile(suffix=".mp3", delete=False)
            with tmp:
                tmp.write(clip.data)
            return tmp.name, tmp.name
        return await self.storage.resolve_to_fetchable_url(clip.uri), None

    async def play(self, clip: Clip) -> None:
        source, tmp_path = await self._source(clip)
        try:
            self._proc = await asyncio.create_subprocess_exec(
                "ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet", source,
                stdin=asyncio.subprocess.DEVNULL,
            )
            await self._proc.wait()
        finally:
            self._proc = None
            self._paused = False
            if tmp_path:
                os.unlink(tmp_path)

    def _signal(self, sig) -> None:
        if self._proc is not None and self._proc.returncode is None:
            try:
                self._proc.send_signal(sig)
            except ProcessLookupError:
                pass

    def pause(self) -> None:
        self._signal(signal.SIGSTOP)
        self._paused = True

    def resume(self) -> None:
        self._signal(signal.SIGCONT)
        self._paused = False

    def stop(self) -> None:
        # a stopped process can't act on SIGTERM until continued
        if self._paused:
            self._signal(signal.SIGCONT)
        self._signal(signal.SIGTERM)


def _on_command(session: PlaybackSession) -> None:
    line = sys.stdin.readline()
    if not line:
        session.stop()
        return
    cmd = line.strip().lower()
    if cmd == "p":
        session.pause()
        print("Paused")
    elif cmd == "r":
        session.resume()
        print("Resumed")
    elif cmd == "q":
        session.stop()
        print("Stopping...")


async def play(user_id: str, playlist_id: str, voice_id: Optional[str], start: int) -> int:
    repository = FirestoreRepository()
    storage = StorageClient()
    try:
        profile = await repository.get_profile(user_id) or UserProfile(uid=user_id)
        playlist = await repository.get_playlist(user_id, playlist_id)
        if playlist is None:
            raise PlaylistNotFound()
        affirmations = await repository.get_affirmations(user_id, playlist.affirmation_ids)
        voice_id = voice_id or default_voice(profile)

        cache = AudioCache(repository, storage, VoiceService(repository))
        session = PlaybackSession(
            profile,
            cache,
            FfplayPlayer(storage),
            on_clip_start=lambda i, a: print(f"[{i + 1}/{len(affirmations)}] {a.text}"),
        )
        session.skip_to(start)

        print(f"Playing '{playlist.name}' with voice {voice_id} (p = pause, r = resume, q = stop)")
        loop = asyncio.get_running_loop()
        loop.add_reader(sys.stdin.fileno(), _on_command, session)
        try:
            completed = await session.start(affirmations, voice_id)
        finally:
            loop.remove_reader(sys.stdin.fileno())
        print("Done." if completed else "Stopped.")
        return 0
    except AiamError as e:
        print(f"Error [{e.label}]: {e.message}")
        return 1
    finally:
        await storage.aclose()


def main():
    parser = argparse.ArgumentParser(description="Play a playlist through ffplay")
    parser.add_argument("--user", required=True, help="user id")
    parser.add_argument("--playlist", required=True, help="playlist id")
    parser.add_argument("--voice", default=None, help="voice id (defaults to the user's clone, then the stock default)")
    parser.add_argument("--start", type=int, default=0, help="index to start from")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(play(args.user, args.playlist, args.voice, args.start)))


if __name__ == "__main__":
    main()
