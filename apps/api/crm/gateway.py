from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Protocol

import structlog
from dateutil import parser as date_parser
from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, String, Text, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.config import settings
from crm.models import COLLECTIONS, Base

logger = structlog.get_logger()

Row = dict[str, Any]


class GatewayError(Exception):
  status_code = 500

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class ValidationError(GatewayError):
  status_code = 400


class NotFoundError(GatewayError):
  status_code = 404


class ConflictError(GatewayError):
  status_code = 409


class Gateway(Protocol):
  async def list(self, collection: str) -> list[Row]: ...

  async def filter(self, collection: str, predicates: dict[str, Any]) -> list[Row]: ...

  async def get(self, collection: str, id: str) -> Row: ...

  async def create(self, collection: str, fields: dict[str, Any]) -> Row: ...

  async def update(self, collection: str, id: str, fields: dict[str, Any]) -> Row: ...

  async def delete(self, collection: str, id: str) -> None: ...

  async def update_many(self, collection: str, changes: Iterable[tuple[str, dict[str, Any]]]) -> int: ...


def model_for(collection: str) -> type[Base]:
  model = COLLECTIONS.get(collection)
  if model is None:
    raise ValidationError(f"Unknown collection: {collection}")
  return model


def _columns(model: type[Base]) -> dict[str, Any]:
  return {attr.key: attr.columns[0] for attr in sa_inspect(model).column_attrs}


def as_utc(value: datetime) -> datetime:
  if value.tzinfo is None:
    return value.replace(tzinfo=timezone.utc)
  return value.astimezone(timezone.utc)


def coerce_id(value: Any) -> str:
  if isinstance(value, bool) or value is None or isinstance(value, (dict, list)):
    raise ValidationError(f"Invalid id: {value!r}")
  out = str(value).strip()
  if not out:
    raise ValidationError("Invalid id: empty")
  return out


def coerce_value(name: str, column: Any, value: Any) -> Any:
  if value is None:
    return None
  typ = column.type
  try:
    if isinstance(typ, Boolean):
      if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes"):
          return True
        if v in ("false", "0", "no", ""):
          return False
        raise ValueError(value)
      return bool(value)
    if isinstance(typ, DateTime):
      if isinstance(value, datetime):
        return as_utc(value)
      if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
      if isinstance(value, str):
        if not value.strip():
          return None
        return as_utc(date_parser.isoparse(value.strip()))
      raise ValueError(value)
    if isinstance(typ, Date):
      if isinstance(value, datetime):
        return value.date()
      if isinstance(value, date):
        return value
      if isinstance(value, str):
        if not value.strip():
          return None
        return date_parser.isoparse(value.strip()).date()
      raise ValueError(value)
    if isinstance(typ, Integer):
      if isinstance(value, bool):
        raise ValueError(value)
      if isinstance(value, str) and not value.strip():
        return None
      return int(value)
    if isinstance(typ, Float):
      if isinstance(value, bool):
        raise ValueError(value)
      if isinstance(value, str) and not value.strip():
        return None
      return float(value)
    if isinstance(typ, JSON):
      return value
    if isinstance(typ, (String, Text)):
      if isinstance(value, (dict, list)):
        raise ValueError(value)
      if name == "id" or name.endswith("_id"):
        return coerce_id(value)
      return str(value)
  except (TypeError, ValueError, OverflowError):
    raise ValidationError(f"Invalid value for {name}: {value!r}") from None
  return value


def coerce_fields(model: type[Base], fields: dict[str, Any]) -> dict[str, Any]:
  cols = _columns(model)
  out: dict[str, Any] = {}
  for k, v in fields.items():
    col = cols.get(k)
    if col is None:
      raise ValidationError(f"Unknown field for {model.__tablename__}: {k}")
    out[k] = coerce_value(k, col, v)
  return out


def as_dict(obj: Base) -> Row:
  out: Row = {}
  for attr in sa_inspect(obj).mapper.column_attrs:
    v = getattr(obj, attr.key)
    if isinstance(v, datetime):
      v = as_utc(v)
    out[attr.key] = v
  return out


class SqlGateway:
  """Collection-scoped CRUD over the ORM tables. Rows are returned as plain dicts."""

  def __init__(self, session: AsyncSession, *, page_size: int | None = None) -> None:
    self.session = session
    self.page_size = int(page_size or settings.gateway_page_size)

  async def _fetch(self, model: type[Base], where: list[Any]) -> list[Row]:
    rows: list[Row] = []
    offset = 0
    while True:
      stmt = (
        select(model)
        .where(*where)
        .order_by(model.id.asc())
        .offset(offset)
        .limit(self.page_size)
        .execution_options(populate_existing=True)
      )
      try:
        res = await self.session.execute(stmt)
      except SQLAlchemyError as e:
        await self.session.rollback()
        raise GatewayError(f"Read failed for {model.__tablename__}: {e}") from e
      page = [as_dict(o) for o in res.scalars().all()]
      rows.extend(page)
      if len(page) < self.page_size:
        return rows
      offset += self.page_size

  async def list(self, collection: str) -> list[Row]:
    return await self._fetch(model_for(collection), [])

  async def filter(self, collection: str, predicates: dict[str, Any]) -> list[Row]:
    model = model_for(collection)
    where = []
    for k, v in coerce_fields(model, dict(predicates or {})).items():
      col = getattr(model, k)
      where.append(col.is_(None) if v is None else col == v)
    return await self._fetch(model, where)

  async def _load(self, model: type[Base], id: Any) -> Base:
    key = coerce_id(id)
    try:
      obj = await self.session.get(model, key, populate_existing=True)
    except SQLAlchemyError as e:
      await self.session.rollback()
      raise GatewayError(f"Read failed for {model.__tablename__}: {e}") from e
    if obj is None:
      raise NotFoundError(f"{model.__tablename__} {key} not found")
    return obj

  async def get(self, collection: str, id: str) -> Row:
    return as_dict(await self._load(model_for(collection), id))

  async def _commit(self, what: str) -> None:
    try:
      await self.session.commit()
    except IntegrityError as e:
      await self.session.rollback()
      raise ConflictError(f"Conflict on {what}") from e
    except SQLAlchemyError as e:
      await self.session.rollback()
      logger.warning("gateway_write_failed", target=what, error=str(e))
      raise GatewayError(f"Write failed on {what}: {e}") from e

  async def create(self, collection: str, fields: dict[str, Any]) -> Row:
    model = model_for(collection)
    obj = model(**coerce_fields(model, dict(fields)))
    self.session.add(obj)
    await self._commit(collection)
    return as_dict(obj)

  async def update(self, collection: str, id: str, fields: dict[str, Any]) -> Row:
    model = model_for(collection)
    values = coerce_fields(model, {k: v for k, v in dict(fields).items() if k != "id"})
    obj = await self._load(model, id)
    for k, v in values.items():
      setattr(obj, k, v)
    await self._commit(collection)
    return as_dict(obj)

  async def delete(self, collection: str, id: str) -> None:
    model = model_for(collection)
    obj = await self._load(model, id)
    await self.session.delete(obj)
    await self._commit(collection)

  async def update_many(self, collection: str, changes: Iterable[tuple[str, dict[str, Any]]]) -> int:
    """Apply several row updates in one commit. Nothing is changed unless every target loads and validates."""
    model = model_for(collection)
    staged: list[tuple[Base, dict[str, Any]]] = []
    for id, fields in changes:
      values = coerce_fields(model, {k: v for k, v in dict(fields).items() if k != "id"})
      staged.append((await self._load(model, id), values))
    for obj, values in staged:
      for k, v in values.items():
        setattr(obj, k, v)
    if staged:
      await self._commit(collection)
    return len(staged)


@dataclass
class BulkResult:
  created: int = 0
  updated: int = 0
  skipped: int = 0
  errors: list[dict[str, Any]] = field(default_factory=list)

  def as_dict(self) -> dict[str, Any]:
    return {"created": self.created, "updated": self.updated, "skipped": self.skipped, "errors": list(self.errors)}


async def bulk_upsert(gateway: Gateway, collection: str, records: list[Any], *, key: str = "id") -> BulkResult:
  """Create or update each record matched on `key`. One bad record never fails the batch."""
  result = BulkResult()
  for i, rec in enumerate(records or []):
    if not isinstance(rec, dict) or not rec:
      result.skipped += 1
      continue
    key_value = rec.get(key)
    try:
      if key_value in (None, ""):
        if key != "id":
          result.skipped += 1
          continue
        await gateway.create(collection, {k: v for k, v in rec.items() if k != "id"})
        result.created += 1
        continue
      existing = await gateway.filter(collection, {key: key_value})
      if existing:
        await gateway.update(collection, existing[0]["id"], rec)
        result.updated += 1
      else:
        await gateway.create(collection, rec)
        result.created += 1
    except GatewayError as e:
      logger.warning("bulk_upsert_record_failed", collection=collection, index=i, key=str(key_value), error=e.message)
      result.errors.append({"index": i, "key": key_value, "error": e.message})
  logger.info(
    "bulk_upsert_completed",
    collection=collection,
    created=result.created,
    updated=result.updated,
    skipped=result.skipped,
    errors=len(result.errors),
  )
  return result
