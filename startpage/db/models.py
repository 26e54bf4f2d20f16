"""Peewee models for the on-device database."""

from __future__ import annotations

import datetime as _dt

import peewee
from playhouse.sqlite_ext import JSONField

from startpage.core.time_utils import utc_now

# Initialised with the concrete database by DatabaseSessionManager.
database_proxy: peewee.Database = peewee.DatabaseProxy()


def _utcnow() -> _dt.datetime:
    return utc_now()


class BaseModel(peewee.Model):
    class Meta:
        database = database_proxy
        legacy_table_names = False


class LocalEntry(BaseModel):
    """One key of the durable local key-value namespace."""

    key = peewee.TextField(primary_key=True)
    value = JSONField(null=True)
    revision = peewee.BigIntegerField(index=True)
    writer = peewee.TextField()
    updated_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "local_entries"


class AssetBlob(BaseModel):
    """Cached bytes of a fetched icon or background, keyed by source URL."""

    id = peewee.AutoField()
    namespace = peewee.TextField()
    url = peewee.TextField()
    blob = peewee.BlobField()
    content_type = peewee.TextField(null=True)
    size = peewee.IntegerField()
    created_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "asset_blobs"
        indexes = ((("namespace", "url"), True),)


ALL_MODELS = (LocalEntry, AssetBlob)
