"""Hand-off of operation batches to a publisher.

Signing and submitting edits happen outside this package. A publisher
receives the finished batch plus the target space metadata; the bundled
``JsonFilePublisher`` writes both to a JSON file for an external signer.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from kg_sheet_sync.models import Metadata
from kg_sheet_sync.ops import OperationBatch
from kg_sheet_sync.report import file_stamp, utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    """Outcome of handing a batch to a publisher.

    Attributes:
        success: True if the publisher accepted the batch
        location: Where the batch went (file path, transaction hash, ...)
        error: Failure message when success is False
    """

    success: bool
    location: str | None = None
    error: str | None = None


class Publisher(Protocol):
    """Anything that accepts a finished batch for a space."""

    def publish(self, batch: OperationBatch, metadata: Metadata, operation: str) -> PublishResult: ...


class JsonFilePublisher:
    """Write batches as ``{operation}-batch-{timestamp}.json`` files.

    The file holds the target space, the edit name, the ops in order and the
    summary counts.
    """

    def __init__(self, output_dir: Path, network: str):
        self.output_dir = output_dir
        self.network = network

    def publish(self, batch: OperationBatch, metadata: Metadata, operation: str) -> PublishResult:
        timestamp = utc_timestamp()
        path = self.output_dir / f"{operation}-batch-{file_stamp(timestamp)}.json"
        payload = {
            "network": self.network,
            "space_id": metadata.space_id,
            "space_type": metadata.space_type,
            "author": metadata.author,
            "edit_name": f"{operation.capitalize()} from spreadsheet ({timestamp})",
            "created_at": timestamp,
            **batch.to_dict(),
        }
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to write batch file {path}: {e}")
            return PublishResult(success=False, error=str(e))

        logger.info(f"Wrote {len(batch)} operations to {path}")
        return PublishResult(success=True, location=str(path))
