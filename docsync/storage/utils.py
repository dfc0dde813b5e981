"""
Storage utilities shared by the processor and the synchronizer.
"""

import uuid


def new_point_id() -> str:
    """
    Generate a fresh vector point id.

    Every ingestion produces a new point; ids are never derived from file
    paths, so re-ingesting a file always yields a different id and the old
    one has to be deleted explicitly.

    Returns:
        Canonical UUID4 string accepted by Qdrant
    """
    return str(uuid.uuid4())
