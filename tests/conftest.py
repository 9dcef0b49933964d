"""Shared fixtures: an in-memory stand-in for the Motor expenses collection."""
import os
from collections import OrderedDict
from datetime import datetime
from types import SimpleNamespace
from typing import Any

import pytest

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CORS_ORIGINS", "https://portal.example.com,https://admin.example.com")

from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo import ReturnDocument

from main import app
from routes import get_expenses_collection


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in query.items())


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]):
        self._docs = docs

    def sort(self, key: str, direction: int) -> "FakeCursor":
        self._docs = sorted(self._docs, key=lambda doc: doc[key], reverse=direction == -1)
        return self

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return dict(next(self._iter))
        except StopIteration:
            raise StopAsyncIteration


class FakeExpensesCollection:
    """Supports the handful of collection calls the service makes."""

    name = "expenses"

    def __init__(self):
        self.docs: list[dict[str, Any]] = []
        self.pipelines: list[list[dict[str, Any]]] = []

    async def insert_one(self, document: dict[str, Any]):
        document.setdefault("_id", ObjectId())
        self.docs.append(dict(document))
        return SimpleNamespace(inserted_id=document["_id"])

    def find(self, query: dict[str, Any] | None = None) -> FakeCursor:
        return FakeCursor([doc for doc in self.docs if _matches(doc, query or {})])

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        for doc in self.docs:
            if _matches(doc, query):
                before = dict(doc)
                doc.update(update["$set"])
                return dict(doc) if return_document == ReturnDocument.AFTER else before
        return None

    def aggregate(self, pipeline: list[dict[str, Any]]) -> FakeCursor:
        # Only the $match / $group-$sum / $project shape used for category totals
        self.pipelines.append(pipeline)
        match, group, _ = pipeline
        group_key = group["$group"]["_id"].lstrip("$")
        sum_field = group["$group"]["total"]["$sum"].lstrip("$")
        totals: OrderedDict[Any, float] = OrderedDict()
        for doc in self.docs:
            if _matches(doc, match["$match"]):
                totals[doc[group_key]] = totals.get(doc[group_key], 0) + doc[sum_field]
        return FakeCursor([{"category": key, "total": total} for key, total in totals.items()])


@pytest.fixture
def collection() -> FakeExpensesCollection:
    return FakeExpensesCollection()


@pytest.fixture
def client(collection):
    app.dependency_overrides[get_expenses_collection] = lambda: collection
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_expense(client):
    def _make(user_id="u1", amount=10.0, category="travel", date=None, **extra):
        payload = {"userId": user_id, "amount": amount, "category": category, **extra}
        if date is not None:
            payload["date"] = date.isoformat() if isinstance(date, datetime) else date
        response = client.post("/api/expenses", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _make
