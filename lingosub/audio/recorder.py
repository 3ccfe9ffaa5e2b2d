"""
ChunkRecorder: optional debug export of the exact audio sent to the backend.

- When disabled: no-op (append/finalize do nothing).
- When enabled: one WAV per dispatched chunk kept in memory, named
  chunk_{index:03d}_{start:.2f}s-{end:.2f}s.wav (absolute times).
- Flush ONLY on finalize() at job end: one zip archive, written once.
- Diagnostic only; nothing here feeds back into the transcript.
"""
from __future__ import annotations

import logging
import os
import threading
import time
import uuid
import zipfile
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from lingosub.audio.segmenter import ChunkDefinition
from lingosub.audio.waveform import encode_wav
from lingosub.config import get_settings

logger = logging.getLogger(__name__)


def chunk_filename(chunk: ChunkDefinition, sample_rate: int) -> str:
    return f"chunk_{chunk.index:03d}_{chunk.start_time(sample_rate):.2f}s-{chunk.end_time(sample_rate):.2f}s.wav"


class ChunkRecorderBase(ABC):
    """Base for chunk recorder. append() takes the samples of one chunk; finalize() writes once and returns path or None."""

    @abstractmethod
    def append(self, chunk: ChunkDefinition, samples: np.ndarray, sample_rate: int) -> None:
        ...

    @abstractmethod
    def finalize(self) -> Optional[str]:
        """Write the archive. Run in executor. Returns path or None."""
        ...


class NoOpChunkRecorder(ChunkRecorderBase):
    """Recorder when debug export is disabled."""

    def append(self, chunk: ChunkDefinition, samples: np.ndarray, sample_rate: int) -> None:
        pass

    def finalize(self) -> Optional[str]:
        return None


class ZipChunkRecorder(ChunkRecorderBase):
    """
    One job = one zip: {export_dir}/job_{job_id}_{ts}.zip.
    Workers append concurrently, so entries are guarded by a lock; the archive
    lists them by chunk index.
    """

    def __init__(self, job_id: str | None = None, export_dir: str | None = None) -> None:
        self._job_id = job_id or uuid.uuid4().hex[:12]
        self._export_dir = export_dir or get_settings().DEBUG_EXPORT_DIR
        self._entries: dict[int, tuple[str, bytes]] = {}
        self._lock = threading.Lock()
        self._finalized = False

    def append(self, chunk: ChunkDefinition, samples: np.ndarray, sample_rate: int) -> None:
        with self._lock:
            if self._finalized:
                return
            self._entries[chunk.index] = (chunk_filename(chunk, sample_rate), encode_wav(samples, sample_rate))

    def finalize(self) -> Optional[str]:
        with self._lock:
            if self._finalized:
                return None
            self._finalized = True
            entries = [self._entries[i] for i in sorted(self._entries)]
            self._entries = {}
        if not entries:
            logger.debug("Debug export: no chunks recorded for job %s", self._job_id)
            return None
        os.makedirs(self._export_dir, exist_ok=True)
        path = os.path.join(self._export_dir, f"job_{self._job_id}_{int(time.time())}.zip")
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, data in entries:
                zf.writestr(name, data)
        logger.info("Debug export: %d chunk(s) written to %s", len(entries), path)
        return path


def create_chunk_recorder(enabled: bool | None = None, job_id: str | None = None) -> ChunkRecorderBase:
    """Create recorder when DEBUG_EXPORT_ENABLED is true (or forced by test mode). Disabled by default."""
    if enabled is None:
        enabled = get_settings().DEBUG_EXPORT_ENABLED
    if enabled:
        return ZipChunkRecorder(job_id=job_id)
    return NoOpChunkRecorder()
