from __future__ import annotations

import pytest

from record_uploader.records.schema import RecordSchema


@pytest.fixture()
def schema() -> RecordSchema:
    """A small schema touching every column kind."""
    return RecordSchema.of(
        {
            "key": "string",
            "name": "string",
            "qty": "long",
            "price": "double",
            "active": "boolean",
            "opened_at": "timestamp",
            "meta": "json",
        }
    )
