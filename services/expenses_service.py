"""Service layer for expense storage, review and analytics."""
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection # Type hints
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from pydantic import ValidationError
from models.expense import Expense, ExpenseCreate, CategoryTotal, ExpenseStatus

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class StoreError(ConnectionError):
    """Raised when the underlying MongoDB operation fails."""


def build_scope_filter(role: Optional[str], user_id: Optional[str]) -> Dict[str, Any]:
    """
    Admins see every expense; everyone else only sees their own.
    A non-admin caller without a userId matches nothing.
    """
    if role == ADMIN_ROLE:
        return {}
    return {"userId": user_id}


def build_category_totals_pipeline(match_filter: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": match_filter},
        {"$group": {"_id": "$category", "total": {"$sum": "$amount"}}},
        {"$project": {"_id": 0, "category": "$_id", "total": 1}},
    ]


# --- Database Interaction Functions (Depend on collection passed from route) ---

async def create_expense(collection: AsyncIOMotorCollection, expense_in: ExpenseCreate) -> Expense:
    """Inserts a validated expense and returns it with its assigned id."""
    now = datetime.now(timezone.utc)
    document = expense_in.model_dump(by_alias=True)
    document["createdAt"] = now
    document["updatedAt"] = now

    logger.info(f"Creating expense for user '{expense_in.user_id}' in category '{expense_in.category}'...")
    try:
        result = await collection.insert_one(document)
    except PyMongoError as e:
        logger.error(f"Database error creating expense: {e}")
        raise StoreError(f"Database error creating expense: {e}") from e

    document["_id"] = result.inserted_id
    logger.info(f"Expense {result.inserted_id} created.")
    return Expense.from_document(document)


async def list_expenses(collection: AsyncIOMotorCollection, role: Optional[str], user_id: Optional[str]) -> List[Expense]:
    """Fetches the expenses visible to the caller, newest first."""
    query = build_scope_filter(role, user_id)
    logger.info(f"Fetching expenses from collection '{collection.name}' (role={role!r}, userId={user_id!r})...")
    expenses = []
    try:
        cursor = collection.find(query).sort("date", -1)
        async for doc in cursor:
            try:
                expenses.append(Expense.from_document(doc))
            except ValidationError as e:
                logger.error(f"Data validation error for document ID {doc.get('_id', 'N/A')}: {e}")
                # Skip invalid documents
                continue
    except PyMongoError as e:
        logger.error(f"Database error fetching expenses: {e}")
        raise StoreError(f"Database error fetching expenses: {e}") from e
    logger.info(f"Fetched {len(expenses)} expenses successfully.")
    return expenses


async def update_expense_status(collection: AsyncIOMotorCollection, expense_id: str, status: ExpenseStatus) -> Optional[Expense]:
    """
    Overwrites the status of one expense and returns the updated record.
    Returns None when no expense has that id. Any status may replace any other.
    """
    try:
        object_id = ObjectId(expense_id)
    except (InvalidId, TypeError):
        logger.warning(f"Status update for malformed expense id '{expense_id}'.")
        return None

    logger.info(f"Setting status of expense {expense_id} to '{status}'...")
    try:
        document = await collection.find_one_and_update(
            {"_id": object_id},
            {"$set": {"status": status, "updatedAt": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Database error updating expense {expense_id}: {e}")
        raise StoreError(f"Database error updating expense: {e}") from e

    if document is None:
        logger.warning(f"Expense {expense_id} not found for status update.")
        return None
    try:
        return Expense.from_document(document)
    except ValidationError as e:
        logger.error(f"Data validation error for updated expense {expense_id}: {e}")
        raise StoreError(f"Stored expense {expense_id} is malformed") from e


async def get_category_totals(collection: AsyncIOMotorCollection, role: Optional[str], user_id: Optional[str]) -> List[CategoryTotal]:
    """Sums expense amounts per category over the caller's visible expenses."""
    pipeline = build_category_totals_pipeline(build_scope_filter(role, user_id))
    totals = []
    try:
        async for row in collection.aggregate(pipeline):
            try:
                totals.append(CategoryTotal(**row))
            except ValidationError as e:
                logger.error(f"Skipping category group {row.get('category')!r}: {e}")
    except PyMongoError as e:
        logger.error(f"Database error aggregating expenses: {e}")
        raise StoreError(f"Database error aggregating expenses: {e}") from e
    logger.info(f"Computed totals for {len(totals)} categories.")
    return totals


async def ping_database(client: AsyncIOMotorClient) -> None:
    try:
        await client.admin.command('ping')
    except PyMongoError as e:
        logger.error(f"MongoDB ping failed: {e}")
        raise StoreError(f"MongoDB ping failed: {e}") from e
