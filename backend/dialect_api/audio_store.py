from __future__ import annotations
import logging
import re
import time
import uuid
from pathlib import Path
from typing import Optional

from .settings import settings

logger = logging.getLogger(__name__)

# Bytes per estimated millisecond of audio. This is a rough guess, not a decoder.
BYTES_PER_MS = 16

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class AudioStorageFailure(Exception):
	pass


def estimate_duration_ms(byte_size: int) -> int:
	"""Approximate audio duration from payload size.

	Known to be inaccurate for compressed formats; real duration decoding is
	out of scope here.
	"""
	return max(0, byte_size) // BYTES_PER_MS


def _safe_name(suggested_name: Optional[str]) -> str:
	name = Path(suggested_name or "").name
	name = _UNSAFE_NAME_CHARS.sub("_", name).strip("._")
	return name or "recording"


class AudioStore:
	def __init__(self, base_dir: Optional[str] = None) -> None:
		self.base_dir = Path(base_dir or settings.audio_upload_dir)

	def save(self, data: bytes, suggested_name: Optional[str] = None) -> str:
		file_name = f"audio_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}_{_safe_name(suggested_name)}"
		path = self.base_dir / file_name
		try:
			path.parent.mkdir(parents=True, exist_ok=True)
			path.write_bytes(data)
		except OSError as e:
			raise AudioStorageFailure(f"Failed to store audio file: {e}") from e
		logger.debug("Stored %d audio bytes at %s", len(data), path)
		return str(path)
