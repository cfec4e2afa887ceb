# ---------- IMPORTS ----------
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .advisor import advise, tips as build_tips
from .ai import InferenceClient, get_inference_client
from .analysis import analyze, category_totals, health_report, health_status, spending_ratio
from .auth import authenticate, create_access_token, get_current_account, hash_password
from .categorize import categorize
from .config import API_LOG_LEVEL, AUTO_CREATE_TABLES, FRONTEND_URL
from .db import engine, get_db, is_missing_table_error
from .models import Base, Transaction, UserAccount, UserProfile
from .receipts import extract
from .schemas import (
    CategorizeIn, ChatIn, LoginIn, ProfileOut, ProfileUpdate, ReceiptIn, SignupIn,
    TelegramConnectIn, TelegramWebhookIn, TipsIn, TransactionCreate, TransactionOut,
    TransactionUpdate, UserOut,
)
from .telegram import USAGE, parse_command, telegram_owner_id

logging.basicConfig(level=API_LOG_LEVEL)
logger = logging.getLogger("finance_api")


# ---------- APP SETUP ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    if AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
        logger.info("database tables ensured")
    yield


app = FastAPI(title="Finance Tracker API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- ERROR SHAPING ----------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(err.get("type") == "missing" for err in errors):
        message = "Missing required fields"
    else:
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc)})


# ---------- HELPERS ----------
def require_user_id(user_id: Optional[str] = Header(None, alias="user-id")) -> str:
    """Caller identity from the ``user-id`` header. Not verified: any caller can claim any id."""
    if not user_id:
        raise HTTPException(status_code=401, detail="User ID required")
    return user_id


def _database_error(db: Session, exc: SQLAlchemyError, action: str) -> HTTPException:
    db.rollback()
    logger.error("database error while %s: %s", action, exc)
    return HTTPException(status_code=500, detail=str(getattr(exc, "orig", None) or exc))


def _tx_out(row: Transaction) -> Dict[str, Any]:
    return TransactionOut.model_validate(row).model_dump(mode="json")


def _mock_transaction(user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """In-memory stand-in returned when the transactions table is not provisioned."""
    now = datetime.utcnow()
    return TransactionOut(
        id=f"tx-{int(now.timestamp() * 1000)}",
        user_id=user_id,
        merchant=fields["merchant"],
        amount=abs(fields["amount"]),
        category=fields["category"],
        description=fields.get("description") or "",
        date=fields.get("date") or now,
        ai_categorized=fields.get("ai_categorized", False),
        receipt_image_url=fields.get("receipt_image_url"),
        created_at=now,
    ).model_dump(mode="json")


def _insert_transaction(db: Session, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    tx = Transaction(
        user_id=user_id,
        merchant=fields["merchant"],
        amount=abs(fields["amount"]),
        category=fields["category"],
        description=fields.get("description") or "",
        date=fields.get("date") or datetime.utcnow(),
        ai_categorized=fields.get("ai_categorized", False),
        receipt_image_url=fields.get("receipt_image_url"),
    )
    try:
        db.add(tx)
        db.commit()
        db.refresh(tx)
    except SQLAlchemyError as e:
        if is_missing_table_error(e):
            db.rollback()
            logger.warning("transactions table missing; returning an unsaved record")
            return _mock_transaction(user_id, fields)
        raise _database_error(db, e, "inserting a transaction")
    return _tx_out(tx)


def _month_transactions(db: Session, user_id: str) -> List[Dict[str, Any]]:
    """This calendar month's transactions as plain dicts; empty when the table is missing."""
    since = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    try:
        rows = (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id, Transaction.date >= since)
            .order_by(Transaction.date.desc())
            .all()
        )
    except SQLAlchemyError as e:
        if is_missing_table_error(e):
            db.rollback()
            return []
        raise _database_error(db, e, "reading this month's transactions")
    return [_tx_out(r) for r in rows]


def _profile(db: Session, user_id: str) -> Optional[UserProfile]:
    try:
        return db.get(UserProfile, user_id)
    except SQLAlchemyError as e:
        if is_missing_table_error(e):
            db.rollback()
            return None
        raise _database_error(db, e, "reading a profile")


def _income(db: Session, user_id: str, override: Optional[float]) -> float:
    if override is not None:
        return override
    profile = _profile(db, user_id)
    return float(profile.monthly_income or 0) if profile else 0.0


# ---------- ROUTES: HEALTH ----------
@app.get("/api/health", summary="Health Check")
def health():
    return {"status": "ok", "message": "Backend is running"}


# ---------- ROUTES: AUTH ----------
@app.post("/api/auth/signup")
def signup(body: SignupIn, db: Session = Depends(get_db)):
    email = body.email.lower()
    if db.query(UserAccount).filter(UserAccount.email == email).first():
        raise HTTPException(status_code=400, detail="Email already registered")

    account = UserAccount(email=email, password_hash=hash_password(body.password))
    db.add(account)
    db.flush()
    db.add(UserProfile(
        id=account.id,
        email=email,
        name=body.name or email.split("@")[0],
        monthly_income=0.0,
        fixed_bills=0.0,
        savings_goal=0.0,
    ))
    db.commit()
    logger.info("signed up %s", account.id)
    return {"success": True, "message": "Signup successful", "user": UserOut(id=account.id, email=email)}


@app.post("/api/auth/login")
def login(body: LoginIn, db: Session = Depends(get_db)):
    account = authenticate(db, body.email, body.password)
    if not account:
        raise HTTPException(status_code=401, detail="Invalid login credentials")
    return {
        "success": True,
        "message": "Login successful",
        "user": UserOut(id=account.id, email=account.email),
        "session": {"access_token": create_access_token(account), "token_type": "bearer"},
    }


@app.post("/api/auth/logout")
def logout(account: UserAccount = Depends(get_current_account), db: Session = Depends(get_db)):
    account.token_version += 1
    db.commit()
    return {"success": True, "message": "Logout successful"}


@app.get("/api/auth/me")
def me(account: UserAccount = Depends(get_current_account), db: Session = Depends(get_db)):
    profile = db.get(UserProfile, account.id)
    return {
        "user": UserOut(id=account.id, email=account.email),
        "profile": ProfileOut.model_validate(profile) if profile else None,
    }


# ---------- ROUTES: PROFILE ----------
@app.get("/api/profile", response_model=ProfileOut)
def get_profile(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    profile = _profile(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User profile not found")
    return profile


@app.put("/api/profile", response_model=ProfileOut)
def update_profile(body: ProfileUpdate, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    profile = _profile(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User profile not found")
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(profile, field, value)
    db.commit()
    db.refresh(profile)
    return profile


# ---------- ROUTES: TRANSACTIONS ----------
@app.get("/api/transactions")
def list_transactions(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    try:
        rows = (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.date.desc())
            .all()
        )
    except SQLAlchemyError as e:
        if is_missing_table_error(e):
            db.rollback()
            logger.warning("transactions table missing; returning an empty list")
            return []
        raise _database_error(db, e, "listing transactions")
    return [_tx_out(r) for r in rows]


@app.get("/api/transactions/{tx_id}")
def get_transaction(tx_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    try:
        tx = db.query(Transaction).filter(Transaction.id == tx_id, Transaction.user_id == user_id).first()
    except SQLAlchemyError as e:
        raise _database_error(db, e, "fetching a transaction")
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return _tx_out(tx)


@app.post("/api/transactions", status_code=201)
def create_transaction(body: TransactionCreate, user_id: str = Depends(require_user_id),
                       db: Session = Depends(get_db)):
    return _insert_transaction(db, user_id, body.model_dump())


@app.put("/api/transactions/{tx_id}")
def update_transaction(tx_id: str, body: TransactionUpdate, user_id: str = Depends(require_user_id),
                       db: Session = Depends(get_db)):
    try:
        tx = db.query(Transaction).filter(Transaction.id == tx_id, Transaction.user_id == user_id).first()
        if not tx:
            raise HTTPException(status_code=404, detail="Transaction not found")
        for field, value in body.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(tx, field, value)
        tx.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(tx)
    except SQLAlchemyError as e:
        raise _database_error(db, e, "updating a transaction")
    return _tx_out(tx)


@app.delete("/api/transactions/{tx_id}")
def delete_transaction(tx_id: str, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    try:
        deleted = (
            db.query(Transaction)
            .filter(Transaction.id == tx_id, Transaction.user_id == user_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        raise _database_error(db, e, "deleting a transaction")
    if not deleted:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"success": True, "message": "Transaction deleted"}


# ---------- ROUTES: AI ----------
@app.post("/api/ai/analyze-receipt")
async def analyze_receipt(body: ReceiptIn, user_id: str = Depends(require_user_id),
                          client: InferenceClient = Depends(get_inference_client)):
    image = body.imageBase64 or body.imageUrl
    if not image:
        raise HTTPException(status_code=400, detail="Image URL or base64 required")
    data = await extract(image, client)
    return {"success": True, "data": data, "message": "Receipt analyzed successfully"}


@app.post("/api/ai/categorize")
async def categorize_transaction(body: CategorizeIn, user_id: str = Depends(require_user_id),
                                 client: InferenceClient = Depends(get_inference_client)):
    category = await categorize(body.merchant, body.description or "", client)
    return {
        "success": True,
        "category": category,
        "merchant": body.merchant,
        "amount": body.amount,
        "message": "Transaction categorized successfully",
    }


@app.get("/api/ai/spending-analysis")
async def spending_analysis(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    transactions = await run_in_threadpool(_month_transactions, db, user_id)
    return {"success": True, "analysis": analyze(transactions), "transactionCount": len(transactions)}


@app.get("/api/ai/health-report")
async def get_health_report(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    profile = await run_in_threadpool(_profile, db, user_id)
    transactions = await run_in_threadpool(_month_transactions, db, user_id)
    profile_data = ProfileOut.model_validate(profile).model_dump() if profile else {}
    return {"success": True, "report": health_report(profile_data, transactions)}


@app.post("/api/ai/process-receipt")
async def process_receipt(body: ReceiptIn, user_id: str = Depends(require_user_id),
                          db: Session = Depends(get_db),
                          client: InferenceClient = Depends(get_inference_client)):
    image = body.imageBase64 or body.imageUrl
    if not image:
        raise HTTPException(status_code=400, detail="Image URL or base64 required")

    extracted = await extract(image, client)
    merchant = extracted.get("merchant") or "Unknown"
    category = await categorize(merchant, "", client)
    transaction = await run_in_threadpool(_insert_transaction, db, user_id, {
        "merchant": merchant,
        "amount": float(extracted.get("amount") or 0),
        "category": category,
        "description": extracted.get("description") or "",
        "ai_categorized": True,
        "receipt_image_url": body.imageUrl,
    })
    return {
        "success": True,
        "transaction": transaction,
        "extraction": extracted,
        "message": "Receipt processed and transaction created",
    }


@app.post("/api/ai/get-tips")
async def get_tips(body: Optional[TipsIn] = None, user_id: str = Depends(require_user_id),
                   db: Session = Depends(get_db)):
    override = body.monthlyIncome if body else None
    income = await run_in_threadpool(_income, db, user_id, override)
    transactions = await run_in_threadpool(_month_transactions, db, user_id)
    totals = category_totals(transactions)
    total_spent = sum(totals.values())
    return {
        "success": True,
        "tips": build_tips(transactions, totals, total_spent, income),
        "totalSpent": total_spent,
        "spendingRatio": round(spending_ratio(total_spent, income), 2),
        "health": health_status(total_spent, income),
    }


@app.post("/api/ai/chat")
async def chat(body: ChatIn, user_id: str = Depends(require_user_id), db: Session = Depends(get_db),
               client: InferenceClient = Depends(get_inference_client)):
    started = time.perf_counter()
    income = await run_in_threadpool(_income, db, user_id, body.monthlyIncome)
    transactions = await run_in_threadpool(_month_transactions, db, user_id)
    result = await advise(body.message, transactions, income, client)
    return {
        "success": True,
        "advice": result["advice"],
        "analysis": result["analysis"],
        "source": result["source"],
        "durationMs": int((time.perf_counter() - started) * 1000),
    }


# ---------- ROUTES: TELEGRAM ----------
@app.get("/api/telegram/verify")
def telegram_verify(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    profile = _profile(db, user_id)
    if not profile:
        return {"verified": False, "message": "User profile not found"}
    return {
        "verified": bool(profile.telegram_connected),
        "username": profile.telegram_username,
        "message": "Telegram connected" if profile.telegram_connected else "Telegram not connected",
    }


@app.post("/api/telegram/connect")
def telegram_connect(body: TelegramConnectIn, user_id: Optional[str] = Header(None, alias="user-id"),
                     db: Session = Depends(get_db)):
    if not user_id or not body.telegramUsername:
        raise HTTPException(status_code=400, detail="User ID and telegram username required")
    profile = _profile(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User profile not found")
    profile.telegram_connected = True
    profile.telegram_username = body.telegramUsername
    profile.telegram_user_id = str(body.telegramUserId) if body.telegramUserId is not None else None
    db.commit()
    db.refresh(profile)
    return {
        "success": True,
        "message": "Telegram connected successfully",
        "profile": ProfileOut.model_validate(profile),
    }


@app.post("/api/telegram/disconnect")
def telegram_disconnect(user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    profile = _profile(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User profile not found")
    profile.telegram_connected = False
    profile.telegram_username = None
    profile.telegram_user_id = None
    db.commit()
    return {"success": True, "message": "Telegram disconnected successfully"}


@app.post("/api/telegram/webhook")
async def telegram_webhook(body: TelegramWebhookIn, db: Session = Depends(get_db),
                           client: InferenceClient = Depends(get_inference_client)):
    if not body.message or not body.user or body.user.get("id") is None:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    text = str(body.message.get("text") or "")
    command = parse_command(text)
    if command is None:
        return {"status": "error", "message": USAGE}

    telegram_id = str(body.user["id"])
    linked = await run_in_threadpool(
        lambda: db.query(UserProfile).filter(UserProfile.telegram_user_id == telegram_id).first()
    )
    owner = linked.id if linked else telegram_owner_id(telegram_id)
    category = command.category or await categorize(command.merchant, "", client)

    transaction = await run_in_threadpool(_insert_transaction, db, owner, {
        "merchant": command.merchant,
        "amount": command.amount,
        "category": category,
        "description": f"Via Telegram: {text}",
    })
    return {
        "status": "success",
        "message": f"Transaction logged: {command.amount:,.2f} at {command.merchant} ({category})",
        "transaction": transaction,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
