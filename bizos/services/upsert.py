"""
Upsert Reconciler

Idempotent write path shared by polling sync and webhook ingestion. Every
normalized row is addressed by its identity triple
(workspace_id, source, external_id), backed by a unique constraint on each
table. A concurrent insert that loses the race hits that constraint; the
IntegrityError is resolved by re-reading the winner's row and updating it.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Type

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bizos.models.base import generate_id
from bizos.utils.logger import log

IDENTITY_FIELDS = ("workspace_id", "source", "external_id")


@dataclass
class UpsertResult:
    id: str
    was_update: bool


class UpsertReconciler:
    """Insert-or-update keyed by the identity triple."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock

    def upsert(self, model: Type, entity: Dict[str, Any]) -> UpsertResult:
        """
        Write one normalized entity.

        Existing row: every field in ``entity`` is applied and updated_at is
        bumped. Missing row: inserted with a fresh id. Commits on success.
        """
        workspace_id, source, external_id = self._identity(entity)
        fields = self._fields(model, entity)
        now = self.clock()

        existing = self._find(model, workspace_id, source, external_id)
        if existing is not None:
            self._apply(existing, fields, now)
            self.db.commit()
            return UpsertResult(id=existing.id, was_update=True)

        row = model(
            id=generate_id(),
            workspace_id=workspace_id,
            source=source,
            external_id=external_id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        try:
            self.db.add(row)
            self.db.commit()
            return UpsertResult(id=row.id, was_update=False)
        except IntegrityError:
            self.db.rollback()
            # Lost an insert race on the same identity triple, or a genuine constraint failure
            winner = self._find(model, workspace_id, source, external_id)
            if winner is None:
                raise

        log.debug(f"{model.__tablename__}: insert race on {source}:{external_id}, updating winner {winner.id}")
        self._apply(winner, fields, now)
        self.db.commit()
        return UpsertResult(id=winner.id, was_update=True)

    def find_id(self, model: Type, workspace_id: str, source: str, external_id: Optional[Any]) -> Optional[str]:
        """Internal id for an identity triple, or None (parent lookups)."""
        if external_id is None or external_id == "":
            return None
        row = self._find(model, workspace_id, source, str(external_id))
        return row.id if row is not None else None

    def patch(self, model: Type, workspace_id: str, source: str, external_id: str,
              values: Dict[str, Any]) -> Optional[str]:
        """Apply a partial update to an existing row. Returns its id, or None if absent."""
        row = self._find(model, workspace_id, source, str(external_id))
        if row is None:
            return None
        self._apply(row, self._fields(model, values), self.clock())
        self.db.commit()
        return row.id

    def delete(self, model: Type, workspace_id: str, source: str, external_id: str) -> bool:
        row = self._find(model, workspace_id, source, str(external_id))
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        return True

    def unlink(self, model: Type, parent_field: str, parent_id: Optional[str]) -> int:
        """Null out references to a parent row that is about to be deleted."""
        if not parent_id:
            return 0
        count = self.db.query(model).filter(getattr(model, parent_field) == parent_id).update(
            {parent_field: None}, synchronize_session=False
        )
        self.db.commit()
        return count

    def replace_children(self, model: Type, parent_field: str, parent_id: str,
                         children: Iterable[Dict[str, Any]]) -> int:
        """Delete a parent's owned rows and insert the given ones."""
        self.db.query(model).filter(getattr(model, parent_field) == parent_id).delete(
            synchronize_session=False
        )
        count = 0
        for child in children:
            values = self._columns_only(model, child)
            values[parent_field] = parent_id
            self.db.add(model(id=generate_id(), **values))
            count += 1
        self.db.commit()
        return count

    def count(self, model: Type, workspace_id: str, source: Optional[str] = None) -> int:
        query = self.db.query(model).filter(model.workspace_id == workspace_id)
        if source is not None:
            query = query.filter(model.source == source)
        return query.count()

    def _find(self, model: Type, workspace_id: str, source: str, external_id: str):
        return (
            self.db.query(model)
            .filter(
                model.workspace_id == workspace_id,
                model.source == source,
                model.external_id == external_id,
            )
            .first()
        )

    @staticmethod
    def _identity(entity: Dict[str, Any]):
        missing = [f for f in IDENTITY_FIELDS if not entity.get(f)]
        if missing:
            raise ValueError(f"Entity missing identity field(s): {', '.join(missing)}")
        return entity["workspace_id"], entity["source"], str(entity["external_id"])

    @staticmethod
    def _columns_only(model: Type, entity: Dict[str, Any]) -> Dict[str, Any]:
        columns = {attr.key for attr in model.__mapper__.column_attrs}
        unknown = [k for k in entity if k not in columns]
        if unknown:
            raise ValueError(f"{model.__tablename__}: unknown field(s) {sorted(unknown)}")
        return dict(entity)

    @classmethod
    def _fields(cls, model: Type, entity: Dict[str, Any]) -> Dict[str, Any]:
        entity = cls._columns_only(model, entity)
        return {
            k: v for k, v in entity.items()
            if k not in IDENTITY_FIELDS and k not in ("id", "created_at", "updated_at")
        }

    @staticmethod
    def _apply(row, fields: Dict[str, Any], now: datetime) -> None:
        for key, value in fields.items():
            setattr(row, key, value)
        row.updated_at = now


def upsert_many(reconciler: UpsertReconciler, model: Type, entities: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """Upsert a batch, returning {'processed','created','updated'} counts."""
    counts = {"processed": 0, "created": 0, "updated": 0}
    for entity in entities:
        result = reconciler.upsert(model, entity)
        counts["processed"] += 1
        counts["updated" if result.was_update else "created"] += 1
    return counts

