"""Repositories owning the document shapes of each collection."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from quiz_live.core.errors import NotFoundError
from quiz_live.core.models import (
    AnswerEvaluation,
    AnswerRecord,
    ClassMeta,
    ClassRecord,
    Participant,
    answer_id,
    participant_id,
)
from quiz_live.core.storage.document_store import DocumentStore

PARTICIPANTS_COLLECTION = "participants"
ANSWERS_COLLECTION = "answers"
CLASSES_COLLECTION = "classes"
CHALLENGES_COLLECTION = "challenges"


class ParticipantsRepository:
    """Presence and score rows keyed by ``classId:sessionId``."""

    def __init__(self, store: DocumentStore) -> None:
        self._collection = store.collection(PARTICIPANTS_COLLECTION)

    async def get(self, class_id: str, session_id: str) -> Participant | None:
        doc = await self._collection.find_one({"id": participant_id(class_id, session_id)})
        return Participant.from_document(doc) if doc else None

    async def upsert(
        self,
        class_id: str,
        session_id: str,
        *,
        display_name: str | None = None,
        connected: bool | None = None,
        last_seen: datetime | None = None,
        score: int | None = None,
    ) -> Participant:
        """Create or update a participant, writing only the fields provided."""
        fields: dict[str, Any] = {"classId": class_id, "sessionId": session_id}
        if display_name is not None:
            fields["displayName"] = display_name
        if connected is not None:
            fields["connected"] = connected
        if last_seen is not None:
            fields["lastSeen"] = last_seen
        if score is not None:
            fields["score"] = score
        on_insert: dict[str, Any] = {}
        if score is None:
            on_insert["score"] = 0
        await self._collection.update(
            {"id": participant_id(class_id, session_id)},
            fields,
            set_on_insert=on_insert,
            upsert=True,
        )
        participant = await self.get(class_id, session_id)
        if participant is None:
            raise NotFoundError(f"Participant {session_id} vanished after upsert.")
        return participant

    async def increment_score(
        self,
        class_id: str,
        session_id: str,
        delta: int,
        last_seen: datetime,
    ) -> Participant:
        doc = await self._collection.increment(
            participant_id(class_id, session_id),
            "score",
            delta,
            set_fields={"lastSeen": last_seen},
            set_on_insert={"classId": class_id, "sessionId": session_id},
        )
        return Participant.from_document(doc)

    async def list_for_class(self, class_id: str, include_disconnected: bool = False) -> list[Participant]:
        filter: dict[str, Any] = {"classId": class_id}
        if not include_disconnected:
            filter["connected"] = True
        docs = await self._collection.find(filter, sort=[("score", -1)])
        return [Participant.from_document(doc) for doc in docs]

    async def list_connected(self, class_id: str) -> list[Participant]:
        return await self.list_for_class(class_id, include_disconnected=False)

    async def count_connected(self, class_id: str) -> int:
        return await self._collection.count({"classId": class_id, "connected": True})

    async def top(self, class_id: str, limit: int) -> list[Participant]:
        docs = await self._collection.find({"classId": class_id}, sort=[("score", -1)], limit=limit)
        return [Participant.from_document(doc) for doc in docs]

    async def mark_disconnected(self, class_id: str, session_id: str, last_seen: datetime) -> None:
        await self._collection.update(
            {"id": participant_id(class_id, session_id)},
            {"connected": False, "lastSeen": last_seen},
        )

    async def reset_scores(self, class_id: str) -> int:
        return await self._collection.update({"classId": class_id}, {"score": 0}, many=True)

    async def delete_for_class(self, class_id: str) -> int:
        return await self._collection.delete({"classId": class_id})


class AnswersRepository:
    """One row per (class, participant, question); writes overwrite."""

    def __init__(self, store: DocumentStore) -> None:
        self._collection = store.collection(ANSWERS_COLLECTION)

    async def get(self, class_id: str, session_id: str, question_id: str) -> AnswerRecord | None:
        doc = await self._collection.find_one({"id": answer_id(class_id, session_id, question_id)})
        return AnswerRecord.from_document(doc) if doc else None

    async def upsert(self, record: AnswerRecord) -> None:
        await self._collection.replace(record.id, record.to_document())

    async def set_evaluation(self, record: AnswerRecord, evaluation: AnswerEvaluation) -> None:
        await self._collection.update(
            {"id": record.id},
            {"evaluation": evaluation.to_document()},
        )

    async def list_for_question(self, class_id: str, question_id: str) -> list[AnswerRecord]:
        docs = await self._collection.find(
            {"classId": class_id, "questionId": question_id},
            sort=[("created_at", 1)],
        )
        return [AnswerRecord.from_document(doc) for doc in docs]

    async def find(
        self,
        class_id: str | None = None,
        question_id: str | None = None,
        session_id: str | None = None,
    ) -> list[dict[str, Any]]:
        filter: dict[str, Any] = {}
        if class_id:
            filter["classId"] = class_id
        if question_id:
            filter["questionId"] = question_id
        if session_id:
            filter["sessionId"] = session_id
        return await self._collection.find(filter, sort=[("created_at", 1)])

    async def count_for_question(self, class_id: str, question_id: str) -> int:
        return await self._collection.count({"classId": class_id, "questionId": question_id})

    async def delete(
        self,
        class_id: str,
        question_id: str | None = None,
        session_id: str | None = None,
    ) -> int:
        filter: dict[str, Any] = {"classId": class_id}
        if question_id:
            filter["questionId"] = question_id
        if session_id:
            filter["sessionId"] = session_id
        return await self._collection.delete(filter)

    async def delete_for_class(self, class_id: str) -> int:
        return await self._collection.delete({"classId": class_id})


class ClassesRepository:
    """Class rows including the ``meta`` session pointer."""

    def __init__(self, store: DocumentStore) -> None:
        self._collection = store.collection(CLASSES_COLLECTION)

    async def get(self, class_id: str) -> ClassRecord | None:
        doc = await self._collection.find_one({"id": class_id})
        return ClassRecord.from_document(doc) if doc else None

    async def require(self, class_id: str) -> ClassRecord:
        record = await self.get(class_id)
        if record is None:
            raise NotFoundError(f"Class '{class_id}' not found.")
        return record

    async def exists(self, class_id: str) -> bool:
        return await self._collection.count({"id": class_id}) > 0

    async def list_all(self, active: bool | None = None) -> list[ClassRecord]:
        filter = {"active": active} if active is not None else None
        docs = await self._collection.find(filter, sort=[("created_at", -1)])
        return [ClassRecord.from_document(doc) for doc in docs]

    async def save(self, record: ClassRecord) -> None:
        await self._collection.replace(record.id, record.to_document())

    async def update_fields(self, class_id: str, fields: dict[str, Any]) -> ClassRecord:
        matched = await self._collection.update({"id": class_id}, fields)
        if not matched:
            raise NotFoundError(f"Class '{class_id}' not found.")
        return await self.require(class_id)

    async def save_meta(self, class_id: str, meta: ClassMeta) -> None:
        matched = await self._collection.update({"id": class_id}, {"meta": meta.to_document()})
        if not matched:
            raise NotFoundError(f"Class '{class_id}' not found.")

    async def delete(self, class_id: str) -> int:
        return await self._collection.delete({"id": class_id})


class ChallengesRepository:
    """Immutable launch records kept for history."""

    def __init__(self, store: DocumentStore) -> None:
        self._collection = store.collection(CHALLENGES_COLLECTION)

    async def save(self, document: dict[str, Any]) -> None:
        await self._collection.replace(document["id"], document)

    async def list_for_class(self, class_id: str) -> list[dict[str, Any]]:
        return await self._collection.find({"classId": class_id}, sort=[("created_at", 1)])

    async def delete_for_class(self, class_id: str) -> int:
        return await self._collection.delete({"classId": class_id})


class Repositories:
    """Bundle of the four repositories sharing one store."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.participants = ParticipantsRepository(store)
        self.answers = AnswersRepository(store)
        self.classes = ClassesRepository(store)
        self.challenges = ChallengesRepository(store)

    async def collection_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for name in (
            PARTICIPANTS_COLLECTION,
            ANSWERS_COLLECTION,
            CLASSES_COLLECTION,
            CHALLENGES_COLLECTION,
        ):
            counts[name] = await self.store.collection(name).count()
        return counts
