"""
Content hashing for change detection.
"""

import hashlib
import logging
from pathlib import Path
from typing import Union

import aiofiles

from ..errors import TransientIOError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


async def compute_file_hash(file_path: Union[str, Path]) -> str:
    """
    Compute SHA256 hash of file content.

    Reads in chunks so large documents are never held in memory at once.

    Args:
        file_path: Path to file

    Returns:
        Lowercase hexadecimal hash string

    Raises:
        TransientIOError: File could not be opened or read
    """
    hasher = hashlib.sha256()
    try:
        async with aiofiles.open(file_path, 'rb') as f:
            while chunk := await f.read(CHUNK_SIZE):
                hasher.update(chunk)
    except (OSError, IOError) as e:
        logger.warning(f"Cannot read file {file_path}: {e}")
        raise TransientIOError(f"Cannot hash {file_path}: {e}") from e

    return hasher.hexdigest()


def hash_bytes(data: bytes) -> str:
    """SHA256 of an in-memory buffer, same format as compute_file_hash"""
    return hashlib.sha256(data).hexdigest()
