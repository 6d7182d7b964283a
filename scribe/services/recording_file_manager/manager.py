from __future__ import annotations

import asyncio
import os
import re
import shutil
from contextlib import suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scribe.context import Context

from scribe.services.manager import BaseRecordingFileServiceManager
from scribe.utils import short_hash

# -------------------------------------------------------------- #
# Recording File Manager Service
# -------------------------------------------------------------- #


class RecordingFileManagerService(BaseRecordingFileServiceManager):
    """
    Owns the on-disk layout for transient recording files.

    Every session gets its own directory under its scope:

        <recording_storage_path>/<scope_id>/<session_id>/
            <participant_id>.pcm             raw capture (append-only)
            <participant_id>.mp3             compressed artifact
            <participant_id>_part_NNN.mp3    segments

    Files are deleted stage by stage as the pipeline progresses; the directory
    itself is removed when the session closes.
    """

    def __init__(self, context: Context, recording_storage_path: str | None = None):
        super().__init__(context)
        self.recording_storage_path = recording_storage_path or context.config.recording_storage_path

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None, lambda: os.makedirs(self.recording_storage_path, exist_ok=True)
        )

        await self.services.logging_service.info(
            f"RecordingFileManagerService initialized with storage path: {self.recording_storage_path}"
        )
        return True

    async def on_close(self):
        return True

    # -------------------------------------------------------------- #
    # Path Helpers
    # -------------------------------------------------------------- #

    def get_storage_path(self) -> str:
        """Get the absolute storage root."""
        return os.path.abspath(self.recording_storage_path)

    def get_session_dir(self, scope_id: str, session_id: str) -> str:
        """Get the directory for one session of a scope (not created)."""
        return os.path.join(
            self.get_storage_path(), self._safe_name(scope_id), self._safe_name(session_id)
        )

    def get_raw_capture_path(self, session_dir: str, participant_id: str) -> str:
        return os.path.join(session_dir, f"{self._safe_name(participant_id)}.pcm")

    def get_artifact_path(self, session_dir: str, participant_id: str) -> str:
        return os.path.join(session_dir, f"{self._safe_name(participant_id)}.mp3")

    @staticmethod
    def _safe_name(name: str) -> str:
        """
        Make an id safe to use as a single path component.

        Ids that are already safe are used as they are. Any other id gets a
        short hash of its original form, so two ids never share a file.
        """
        name = str(name)
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", name)
        if safe == name and safe not in ("", ".", ".."):
            return safe
        return f"{safe}_{short_hash(name)}"

    # -------------------------------------------------------------- #
    # File Operations
    # -------------------------------------------------------------- #

    async def create_session_dir(self, scope_id: str, session_id: str) -> str:
        """Create the session directory if needed and return its path."""
        session_dir = self.get_session_dir(scope_id, session_id)
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, lambda: os.makedirs(session_dir, exist_ok=True))
        return session_dir

    async def delete_file(self, path: str) -> None:
        """Delete a transient file; a missing file is not an error."""
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, os.unlink, path)
            await self.services.logging_service.debug(f"Deleted transient file: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            await self.services.logging_service.error(
                f"FILE ERROR: Failed to delete transient file - "
                f"Path: {path}, Error Type: {type(e).__name__}, Details: {str(e)}"
            )

    async def remove_session_dir(self, session_dir: str) -> None:
        """Remove a session directory and anything still inside it."""
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, shutil.rmtree, session_dir)
            await self.services.logging_service.info(f"Removed session directory: {session_dir}")
        except FileNotFoundError:
            pass
        except OSError as e:
            await self.services.logging_service.error(
                f"FILE ERROR: Failed to remove session directory - "
                f"Path: {session_dir}, Error Type: {type(e).__name__}, Details: {str(e)}"
            )

        # Drop the scope directory too once its last session is gone
        scope_dir = os.path.dirname(session_dir)
        with suppress(OSError):
            await loop.run_in_executor(None, os.rmdir, scope_dir)
