"""Checklist store: groups with embedded items and documents."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..models import (
    DEFAULT_ITEM_STATUS,
    ChecklistGroup,
    ChecklistGroupRecord,
    ChecklistItem,
    DocumentRecord,
)
from ..utils.errors import (
    ConcurrentUpdateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

log = logging.getLogger("checklist_relay.checklists")

MAX_NAME_LENGTH = 200

ItemsMutation = Callable[[ChecklistGroup], None]


def _clean_name(value: str | None, *, field: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationError(f"{field} is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"{field} must be at most {MAX_NAME_LENGTH} characters")
    return name


class ChecklistStore:
    """Create/read/append operations over checklist groups.

    Every mutation reads the whole group, edits the embedded items in memory and
    writes the full ``items`` column back. The write only lands if the group's
    ``version`` is unchanged since the read; otherwise the mutation is replayed
    against a fresh copy, up to ``max_write_attempts`` times.
    """

    def __init__(self, session: Session, *, max_write_attempts: int = 3) -> None:
        self.session = session
        self.max_write_attempts = max(1, max_write_attempts)

    def create_group(self, name: str) -> ChecklistGroup:
        record = ChecklistGroupRecord(name=_clean_name(name, field="name"), items=[])
        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error("Failed to create checklist group: %s", exc)
            raise PersistenceError("Could not create checklist group") from exc
        log.info("Created checklist group %s (%s)", record.id, record.name)
        return ChecklistGroup.from_record(record)

    def list_groups(self) -> list[ChecklistGroup]:
        statement = select(ChecklistGroupRecord).order_by(ChecklistGroupRecord.id)
        try:
            records = self.session.exec(statement).all()
        except SQLAlchemyError as exc:
            raise PersistenceError("Could not list checklist groups") from exc
        return [ChecklistGroup.from_record(record) for record in records]

    def get_group(self, group_id: int) -> ChecklistGroup:
        return ChecklistGroup.from_record(self._load(group_id))

    def get_item(self, group_id: int, item_id: str) -> ChecklistItem:
        group = self.get_group(group_id)
        item = group.find_item(item_id)
        if item is None:
            raise NotFoundError("Item not found", extra={"item_id": item_id})
        return item

    def add_item(
        self, group_id: int, name: str, status: str | None = None
    ) -> ChecklistItem:
        item = ChecklistItem(
            name=_clean_name(name, field="name"),
            status=(status or "").strip() or DEFAULT_ITEM_STATUS,
        )

        def _append(group: ChecklistGroup) -> None:
            group.items.append(item)

        self._mutate(group_id, _append)
        log.info("Added item %s to group %s", item.id, group_id)
        return item

    def append_document(
        self, group_id: int, item_id: str, document: DocumentRecord
    ) -> None:
        def _attach(group: ChecklistGroup) -> None:
            item = group.find_item(item_id)
            if item is None:
                raise NotFoundError("Item not found", extra={"item_id": item_id})
            item.documents.append(document)

        self._mutate(group_id, _attach)
        log.info(
            "Recorded document %s on group %s item %s",
            document.storage_key,
            group_id,
            item_id,
        )

    def _load(self, group_id: int) -> ChecklistGroupRecord:
        try:
            record = self.session.get(ChecklistGroupRecord, group_id)
        except SQLAlchemyError as exc:
            raise PersistenceError("Could not read checklist group") from exc
        if record is None:
            raise NotFoundError("Group not found", extra={"group_id": group_id})
        return record

    def _mutate(self, group_id: int, mutation: ItemsMutation) -> ChecklistGroup:
        for attempt in range(1, self.max_write_attempts + 1):
            record = self._load(group_id)
            group = ChecklistGroup.from_record(record)
            mutation(group)

            items = [item.model_dump(mode="json") for item in group.items]
            next_version = record.version + 1
            statement = (
                update(ChecklistGroupRecord)
                .where(ChecklistGroupRecord.id == group_id)
                .where(ChecklistGroupRecord.version == record.version)
                .values(
                    items=items,
                    version=next_version,
                    updated_at=datetime.now(UTC),
                )
            )
            try:
                result = self.session.execute(statement)
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                log.error("Failed to write checklist group %s: %s", group_id, exc)
                raise PersistenceError("Could not update checklist group") from exc

            # Drop the cached row so the next read sees what was committed.
            self.session.expire(record)
            if result.rowcount == 1:
                group.version = next_version
                return group

            log.warning(
                "Checklist group %s changed during update (attempt %d/%d)",
                group_id,
                attempt,
                self.max_write_attempts,
            )

        raise ConcurrentUpdateError(
            "Checklist group was modified concurrently; retry the request",
            extra={"group_id": group_id},
        )


__all__ = ["ChecklistStore", "MAX_NAME_LENGTH"]
