"""Shared fixtures and fakes for the worker test suite."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from typing import Any
from unittest.mock import MagicMock

import pytest

from quality_worker.analysis.interface import SemanticAnalysis
from quality_worker.pipeline import AnalysisResult
from quality_worker.storage.mongo_store import AssociatedRecord
from quality_worker.transcription.interface import Transcript, WordTiming
from quality_worker.utils.errors import DuplicateResultError


class InMemoryStore:
    """Store fake with the same uniqueness and conditional-update rules as MongoStore.

    Each operation yields to the event loop once so concurrent callers
    interleave the way they would against a real server.
    """

    def __init__(self) -> None:
        self.records: dict[str, AssociatedRecord] = {}
        self.results: dict[str, AnalysisResult] = {}
        self.treated_transitions = 0

    def add_record(self, file_name: str, record_id: str = "rec-1", treated: bool = False) -> AssociatedRecord:
        record = AssociatedRecord(record_id=record_id, file_name=file_name, treated=treated)
        self.records[file_name] = record
        return record

    async def find_result(self, file_name: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        return {"_id": file_name} if file_name in self.results else None

    async def find_record(self, file_name: str) -> AssociatedRecord | None:
        await asyncio.sleep(0)
        return self.records.get(file_name)

    async def insert_result(self, result: AnalysisResult) -> str:
        await asyncio.sleep(0)
        if result.file_name in self.results:
            raise DuplicateResultError("Analysis result already processed", file_name=result.file_name)
        self.results[result.file_name] = result
        return f"result-{len(self.results)}"

    async def mark_treated(self, record: AssociatedRecord) -> bool:
        await asyncio.sleep(0)
        current = self.records.get(record.file_name)
        if current is None or current.treated:
            return False
        self.records[record.file_name] = replace(current, treated=True)
        self.treated_transitions += 1
        return True


class FakeMessage:
    """Stand-in for a Pub/Sub message."""

    def __init__(
        self,
        payload: Any,
        message_id: str = "msg-1",
        delivery_attempt: int | None = None,
    ) -> None:
        self.message_id = message_id
        self.delivery_attempt = delivery_attempt
        if isinstance(payload, bytes):
            self.data = payload
        else:
            self.data = json.dumps(payload).encode("utf-8")
        self.ack = MagicMock()
        self.nack = MagicMock()


def make_result(file_name: str = "call-1.mp3", record_id: str = "rec-1") -> AnalysisResult:
    return AnalysisResult(
        file_name=file_name,
        record_id=record_id,
        gcs_uri=f"gs://bucket/{file_name}",
        transcript=Transcript(
            text="Bom dia",
            word_timings=[WordTiming(word="Bom", start_time=0.0, end_time=0.3)],
            confidence=0.9,
        ),
        primary=SemanticAnalysis(provider="gemini", total_score=80),
        secondary=None,
        consensus_score=80,
        consensus_source="primary_only",
        processing_time_seconds=1.0,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
