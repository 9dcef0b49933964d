"""API Routes for expenses"""
import os
from fastapi import APIRouter, HTTPException, Body, Depends, Request, Query, status
from typing import List, Annotated, Optional
from services import expenses_service
from services.expenses_service import StoreError
from models.expense import Expense, ExpenseCreate, ExpenseStatusUpdate, CategoryTotal
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from slowapi import Limiter
from slowapi.util import get_remote_address
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

# --- Rate Limiter Setup ---
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
)


def current_rate_limit() -> str:
    """Per-client limit applied to every route, read on each request (e.g. '60/minute')."""
    return os.getenv("RATE_LIMIT", "60/minute")


# --- Dependency Functions ---
def get_expenses_collection(request: Request) -> AsyncIOMotorCollection:
    """Dependency to get the MongoDB expenses collection from the request state."""
    collection = getattr(request.state, "expenses_collection", None)
    if collection is None:
        logger.error("Expenses collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection


def get_db_client(request: Request) -> AsyncIOMotorClient:
    client = getattr(request.state, "db_client", None)
    if client is None:
        logger.error("MongoDB client not found in application state.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return client


ExpensesCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_expenses_collection)]
DbClientDep = Annotated[AsyncIOMotorClient, Depends(get_db_client)]

RoleQuery = Annotated[Optional[str], Query(description="Caller role; 'admin' sees every expense.")]
UserIdQuery = Annotated[Optional[str], Query(alias="userId", description="Caller user id.")]

# --- API Routes ---

@router.post("/expenses", response_model=Expense, status_code=status.HTTP_201_CREATED, summary="Create Expense")
@limiter.limit(current_rate_limit)
async def create_expense(request: Request, collection: ExpensesCollectionDep, expense_in: Annotated[ExpenseCreate, Body(...)]) -> Expense:
    """Stores a new expense. Status defaults to 'pending'."""
    logger.info(f"POST /expenses endpoint called for user '{expense_in.user_id}'.")
    try:
        return await expenses_service.create_expense(collection, expense_in)
    except StoreError as e:
        logger.error(f"Error creating expense: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/expenses", response_model=List[Expense], summary="List Expenses", description="Admins get every expense, other callers only their own, newest first.")
@limiter.limit(current_rate_limit)
async def get_expenses(request: Request, collection: ExpensesCollectionDep, role: RoleQuery = None, user_id: UserIdQuery = None) -> List[Expense]:
    logger.info(f"GET /expenses endpoint called (role={role!r}, userId={user_id!r}).")
    try:
        return await expenses_service.list_expenses(collection, role, user_id)
    except StoreError as e:
        logger.error(f"Error fetching expenses: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/expenses/analytics", response_model=List[CategoryTotal], summary="Expense Totals per Category")
@limiter.limit(current_rate_limit)
async def get_expense_analytics(request: Request, collection: ExpensesCollectionDep, role: RoleQuery = None, user_id: UserIdQuery = None) -> List[CategoryTotal]:
    """
    Sums amounts per category over the expenses the caller may see.
    The caller must identify itself with a userId, admin or not.
    """
    logger.info(f"GET /expenses/analytics endpoint called (role={role!r}, userId={user_id!r}).")
    if not user_id:
        logger.warning("Analytics request rejected: missing userId.")
        raise HTTPException(status_code=403, detail="Missing userId token")

    try:
        return await expenses_service.get_category_totals(collection, role, user_id)
    except StoreError as e:
        logger.error(f"Analytics error: {e}")
        raise HTTPException(status_code=500, detail="Server error")


@router.patch("/expenses/{expense_id}", response_model=Expense, summary="Approve or Reject Expense")
@limiter.limit(current_rate_limit)
async def update_expense_status(request: Request, collection: ExpensesCollectionDep, expense_id: str, update: Annotated[ExpenseStatusUpdate, Body(...)]) -> Expense:
    logger.info(f"PATCH /expenses/{expense_id} endpoint called with status '{update.status}'.")
    try:
        expense = await expenses_service.update_expense_status(collection, expense_id, update.status)
    except StoreError as e:
        logger.error(f"Error updating expense status: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


@router.get("/health", summary="Health Check")
@limiter.limit(current_rate_limit)
async def health(request: Request, client: DbClientDep):
    """Pings MongoDB."""
    try:
        await expenses_service.ping_database(client)
    except StoreError:
        raise HTTPException(status_code=503, detail="Database service not available.")
    return {"status": "ok", "database": "connected"}
