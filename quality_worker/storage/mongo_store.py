"""MongoDB persistence for evaluation records and analysis results.

Evaluation records are owned by the quality backend; this worker only
reads them and flips their audio-treated flag. Analysis results are written
once per audio file and never updated. The treated flag uses a conditional
update so two deliveries of the same file cannot both claim it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import AsyncMongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from quality_worker.pipeline import AnalysisResult
from quality_worker.utils.errors import DuplicateResultError, StorageError
from quality_worker.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

EVALUATIONS_COLLECTION = "qualidade_avaliacoes"
RESULTS_COLLECTION = "audio_analise_results"
RECORD_FILE_FIELD = "nomeArquivoAudio"
RECORD_TREATED_FIELD = "audioTreated"
RESULT_FILE_FIELD = "nomeArquivo"


@dataclass(frozen=True)
class AssociatedRecord:
    """Business record an audio file belongs to."""

    record_id: str
    file_name: str
    treated: bool

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> AssociatedRecord:
        return cls(
            record_id=str(doc["_id"]),
            file_name=doc.get(RECORD_FILE_FIELD, ""),
            treated=bool(doc.get(RECORD_TREATED_FIELD, False)),
        )


class MongoStore:
    """Async MongoDB store for the idempotency guard.

    Reads configuration from environment variables:
        MONGO_ENV, CONSOLE_ANALISES_DB

    Args:
        uri: MongoDB connection string.
        database_name: Database holding both collections.
        client: Optional pre-configured AsyncMongoClient.
    """

    def __init__(
        self,
        uri: str | None = None,
        database_name: str | None = None,
        client: Any = None,
    ) -> None:
        self.uri = uri or os.environ.get("MONGO_ENV", "")
        self.database_name = database_name or os.environ.get(
            "CONSOLE_ANALISES_DB", "console_analises"
        )

        if client is None:
            if not self.uri:
                raise StorageError("MONGO_ENV is required", operation="init")
            client = AsyncMongoClient(self.uri)

        self._client = client
        db = client[self.database_name]
        self._records = db[EVALUATIONS_COLLECTION]
        self._results = db[RESULTS_COLLECTION]

    @retry_with_backoff(max_retries=2, base_delay=2.0, retryable_exceptions=(StorageError,))
    async def connect(self) -> None:
        """Verify connectivity and ensure the result uniqueness index.

        Raises:
            StorageError: If the server cannot be reached.
        """
        try:
            await self._client.admin.command("ping")
            await self._results.create_index(RESULT_FILE_FIELD, unique=True)
        except PyMongoError as exc:
            raise StorageError(
                f"MongoDB connection failed: {exc}", operation="connect"
            ) from exc
        logger.info("MongoDB connection established (db=%s)", self.database_name)

    async def ping(self) -> bool:
        """Return True when the server answers a ping."""
        try:
            await self._client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning("MongoDB ping failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        """Close the client and release its connection pool."""
        await self._client.close()

    async def find_result(self, file_name: str) -> dict[str, Any] | None:
        """Return the stored analysis result document for a file, if any.

        Raises:
            StorageError: If the query fails.
        """
        try:
            return await self._results.find_one(
                {RESULT_FILE_FIELD: file_name}, projection={"_id": 1}
            )
        except PyMongoError as exc:
            raise StorageError(
                f"Result lookup failed: {exc}",
                file_name=file_name,
                operation="find_result",
            ) from exc

    async def find_record(self, file_name: str) -> AssociatedRecord | None:
        """Return the evaluation record associated with a file, if any.

        Raises:
            StorageError: If the query fails.
        """
        try:
            doc = await self._records.find_one({RECORD_FILE_FIELD: file_name})
        except PyMongoError as exc:
            raise StorageError(
                f"Record lookup failed: {exc}",
                file_name=file_name,
                operation="find_record",
            ) from exc
        return AssociatedRecord.from_document(doc) if doc else None

    async def insert_result(self, result: AnalysisResult) -> str:
        """Insert an analysis result.

        Returns:
            The new document id.

        Raises:
            DuplicateResultError: If a result for the file already exists.
            StorageError: If the insert fails for any other reason.
        """
        try:
            inserted = await self._results.insert_one(result.to_document())
        except DuplicateKeyError as exc:
            raise DuplicateResultError(
                "Analysis result already processed", file_name=result.file_name
            ) from exc
        except PyMongoError as exc:
            raise StorageError(
                f"Result insert failed: {exc}",
                file_name=result.file_name,
                operation="insert_result",
            ) from exc
        return str(inserted.inserted_id)

    async def mark_treated(self, record: AssociatedRecord) -> bool:
        """Set the treated flag only if it is still unset.

        Returns:
            True if this call flipped the flag, False if it was already set.

        Raises:
            StorageError: If the update fails.
        """
        try:
            outcome = await self._records.update_one(
                {"_id": _object_id(record.record_id), RECORD_TREATED_FIELD: {"$ne": True}},
                {"$set": {RECORD_TREATED_FIELD: True}, "$currentDate": {"updatedAt": True}},
            )
        except PyMongoError as exc:
            raise StorageError(
                f"Treated flag update failed: {exc}",
                file_name=record.file_name,
                operation="mark_treated",
            ) from exc
        return outcome.modified_count == 1


def _object_id(record_id: str) -> Any:
    try:
        return ObjectId(record_id)
    except (InvalidId, TypeError):
        return record_id
