import logging
from contextlib import asynccontextmanager
from typing import Optional

import stripe
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import payments
from auth import Principal, forbid_self_action, get_principal, require_admin, require_staff
from database import (
    BLOGS, PAYMENTS, REQUESTS, USERS,
    DatabaseUnavailable, count_documents, create_document, ensure_indexes, get_db,
    get_documents, mutation_result, parse_object_id, serialize, sum_field,
)
from schemas import (
    Blog, BlogCreate, BlogStatusUpdate, CheckoutCreate, DonateClaim, DonationRequest,
    DonationRequestCreate, DonationRequestUpdate, DonationStatusUpdate, PaymentConfirm,
    Role, User, UserCreate, UserProfileUpdate, UserStatus,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger(__name__)

STAFF_ROLES = ("admin", "volunteer")
# values the front-end sends for an unset select box
PLACEHOLDERS = {"", "all", "any", "undefined", "null", "select"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except DatabaseUnavailable as ex:
        log.warning("Skipping index setup: %s", ex)
    yield


app = FastAPI(title="Blood Donation API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handlers ---

@app.exception_handler(StarletteHTTPException)
async def http_error(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error(request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(InvalidId)
async def invalid_id(request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"message": "Invalid id"})


@app.exception_handler(DatabaseUnavailable)
async def database_unavailable(request, exc: DatabaseUnavailable):
    log.error("%s", exc)
    return JSONResponse(status_code=500, content={"message": "Database not available"})


@app.exception_handler(PyMongoError)
async def database_error(request, exc: PyMongoError):
    log.exception("Database operation failed", exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Database operation failed"})


@app.exception_handler(stripe.StripeError)
async def gateway_error(request, exc: stripe.StripeError):
    log.error("Stripe error: %s", exc)
    return JSONResponse(status_code=500, content={"message": "Payment gateway error"})


@app.exception_handler(Exception)
async def unhandled_error(request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# --- Helpers ---

def paginate(collection: str, query: dict, page: int, size: int, sort: str = "createdAt"):
    items = get_documents(collection, query, sort=sort, skip=page * size, limit=size)
    # separate count, may drift from the page under concurrent writes
    return items, count_documents(collection, query)


def inserted(_id: str) -> dict:
    return {"acknowledged": True, "insertedId": _id}


def is_staff(email: str) -> bool:
    user = get_db()[USERS].find_one({"email": email})
    return bool(user) and user.get("status") != "blocked" and user.get("role") in STAFF_ROLES


def check_request_access(doc: Optional[dict], principal: Principal, allow_donor: bool = False):
    """Requester or staff may change a request; missing requests fall through."""
    if doc is None:
        return
    if doc.get("requester_email") == principal.email:
        return
    if allow_donor and doc.get("donor_email") == principal.email:
        return
    if not is_staff(principal.email):
        raise HTTPException(status_code=403, detail="forbidden access")


# --- Basic routes ---

@app.get("/")
def root():
    return {"ok": True, "service": "Blood Donation Backend"}


@app.get("/test")
def test_database():
    info = {"backend": "running", "database": "not-configured", "collections": []}
    try:
        db = get_db()
        info["collections"] = db.list_collection_names()
        info["database"] = "connected"
    except DatabaseUnavailable:
        pass
    except PyMongoError as e:
        info["database"] = f"error: {str(e)[:80]}"
    return info


# --- Users ---

@app.post("/users")
def create_user(payload: UserCreate):
    email = str(payload.email)
    if get_db()[USERS].find_one({"email": email}):
        return {"message": "User exists", "insertedId": None}
    user = User(**payload.model_dump())
    return inserted(create_document(USERS, user))


@app.get("/users")
def list_users(
    status: Optional[UserStatus] = None,
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    admin: dict = Depends(require_admin),
):
    query = {"status": status} if status else {}
    users, total = paginate(USERS, query, page, size)
    return {"users": users, "totalCount": total}


@app.get("/user/{email}")
def get_user(email: str, principal: Principal = Depends(get_principal)):
    doc = get_db()[USERS].find_one({"email": email})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return serialize(doc)


@app.get("/users/role/{email}")
def get_user_role(email: str, principal: Principal = Depends(get_principal)):
    doc = get_db()[USERS].find_one({"email": email}, {"role": 1, "status": 1})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return {"role": doc.get("role", "donor"), "status": doc.get("status", "active")}


@app.patch("/update/user/status")
def update_user_status(
    email: str,
    status: UserStatus,
    admin: dict = Depends(require_admin),
    principal: Principal = Depends(get_principal),
):
    forbid_self_action(email, principal)
    result = get_db()[USERS].update_one({"email": email}, {"$set": {"status": status}})
    log.info("%s set status of %s to %s", principal.email, email, status)
    return mutation_result(result)


@app.patch("/update/user/role")
def update_user_role(
    email: str,
    role: Role,
    admin: dict = Depends(require_admin),
    principal: Principal = Depends(get_principal),
):
    forbid_self_action(email, principal)
    result = get_db()[USERS].update_one({"email": email}, {"$set": {"role": role}})
    log.info("%s set role of %s to %s", principal.email, email, role)
    return mutation_result(result)


@app.patch("/user/update/{email}")
def update_profile(email: str, payload: UserProfileUpdate, principal: Principal = Depends(get_principal)):
    if email.lower() != principal.email.lower():
        raise HTTPException(status_code=403, detail="forbidden access")
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    result = get_db()[USERS].update_one({"email": principal.email}, {"$set": changes})
    return mutation_result(result)


# --- Dashboards ---

@app.get("/admin-stats")
def admin_stats(admin: dict = Depends(require_admin)):
    return {
        "totalUsers": count_documents(USERS),
        "totalRequests": count_documents(REQUESTS),
        "totalFunding": sum_field(PAYMENTS, "amount"),
        "pendingRequests": count_documents(REQUESTS, {"donation_status": "pending"}),
        "doneRequests": count_documents(REQUESTS, {"donation_status": "done"}),
    }


@app.get("/volunteer-stats")
def volunteer_stats(staff: dict = Depends(require_staff)):
    return {
        "totalRequests": count_documents(REQUESTS),
        "pendingRequests": count_documents(REQUESTS, {"donation_status": "pending"}),
        "doneRequests": count_documents(REQUESTS, {"donation_status": "done"}),
        "myDraftBlogs": count_documents(BLOGS, {"authorEmail": staff["email"], "status": "draft"}),
    }


# --- Donation requests ---

@app.get("/all-requests")
def all_requests(
    status: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    staff: dict = Depends(require_staff),
):
    query = {"donation_status": status} if status and status not in PLACEHOLDERS else {}
    requests, total = paginate(REQUESTS, query, page, size)
    return {"requests": requests, "totalCount": total}


@app.get("/all-pending-requests")
def all_pending_requests(page: int = Query(0, ge=0), size: int = Query(10, ge=1, le=100)):
    requests, total = paginate(REQUESTS, {"donation_status": "pending"}, page, size)
    return {"requests": requests, "totalCount": total}


@app.get("/request/{id}")
def get_request(id: str, principal: Principal = Depends(get_principal)):
    doc = get_db()[REQUESTS].find_one({"_id": parse_object_id(id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Request not found")
    return serialize(doc)


@app.post("/requests")
def create_request(payload: DonationRequestCreate, principal: Principal = Depends(get_principal)):
    user = get_db()[USERS].find_one({"email": principal.email})
    if user and user.get("status") == "blocked":
        raise HTTPException(status_code=403, detail="Blocked users cannot create requests")
    data = payload.model_dump()
    if not data.get("requester_name") and user:
        data["requester_name"] = user.get("name")
    record = DonationRequest(**data, requester_email=principal.email)
    return inserted(create_document(REQUESTS, record))


@app.patch("/request/update/{id}")
def update_request(id: str, payload: DonationRequestUpdate, principal: Principal = Depends(get_principal)):
    oid = parse_object_id(id)
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    collection = get_db()[REQUESTS]
    check_request_access(collection.find_one({"_id": oid}), principal)
    return mutation_result(collection.update_one({"_id": oid}, {"$set": changes}))


@app.patch("/request/status/{id}")
def update_request_status(id: str, payload: DonationStatusUpdate, principal: Principal = Depends(get_principal)):
    oid = parse_object_id(id)
    collection = get_db()[REQUESTS]
    check_request_access(collection.find_one({"_id": oid}), principal, allow_donor=True)
    result = collection.update_one({"_id": oid}, {"$set": {"donation_status": payload.donation_status}})
    return mutation_result(result)


@app.patch("/requests/donate/{id}")
def donate_to_request(id: str, payload: DonateClaim, principal: Principal = Depends(get_principal)):
    """Claim a pending request; only one concurrent claim can match."""
    oid = parse_object_id(id)
    db = get_db()
    user = db[USERS].find_one({"email": principal.email})
    if user and user.get("status") == "blocked":
        raise HTTPException(status_code=403, detail="Blocked users cannot donate")
    result = db[REQUESTS].update_one(
        {"_id": oid, "donation_status": "pending", "requester_email": {"$ne": principal.email}},
        {"$set": {
            "donor_name": payload.donor_name,
            "donor_email": principal.email,
            "donation_status": "inprogress",
        }},
    )
    if result.matched_count == 0:
        log.info("Claim on %s by %s matched nothing", id, principal.email)
    return mutation_result(result)


@app.delete("/request/delete/{id}")
@app.delete("/requests/{id}")
def delete_request(id: str, principal: Principal = Depends(get_principal)):
    oid = parse_object_id(id)
    collection = get_db()[REQUESTS]
    check_request_access(collection.find_one({"_id": oid}), principal)
    return mutation_result(collection.delete_one({"_id": oid}))


@app.get("/my-request")
def my_requests(
    status: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_principal),
):
    query = {"requester_email": principal.email}
    if status and status not in PLACEHOLDERS:
        query["donation_status"] = status
    requests, total = paginate(REQUESTS, query, page, size)
    return {"requests": requests, "totalCount": total}


@app.get("/my-requests-recent")
def my_recent_requests(principal: Principal = Depends(get_principal)):
    return get_documents(REQUESTS, {"requester_email": principal.email}, limit=3)


@app.get("/search-donors")
def search_donors(
    blood_group: Optional[str] = None,
    district: Optional[str] = None,
    upazila: Optional[str] = None,
):
    query = {"role": "donor", "status": "active"}
    for field, value in (("blood_group", blood_group), ("district", district), ("upazila", upazila)):
        if value is not None and value.strip().lower() not in PLACEHOLDERS:
            query[field] = value.strip()
    return get_documents(USERS, query)


# --- Funding ---

@app.post("/create-payment-checkout")
def create_payment_checkout(payload: CheckoutCreate, principal: Principal = Depends(get_principal)):
    if payload.donateAmount is None:
        raise HTTPException(status_code=400, detail="donateAmount is required")
    session = payments.create_checkout_session(payload.donateAmount, principal.email, payload.donorName)
    return {"url": session.url, "id": session.id}


@app.post("/success-payment")
def success_payment(payload: PaymentConfirm, principal: Principal = Depends(get_principal)):
    session = payments.retrieve_session(payload.sessionId)
    if session.payment_status != "paid":
        raise HTTPException(status_code=400, detail="Payment not completed")
    if not session.amount_total or not session.payment_intent:
        # fully discounted sessions carry no charge and no payment intent
        raise HTTPException(status_code=400, detail="Nothing was charged")
    payment, existed = payments.record_payment(payments.payment_from_session(session))
    return {"payment": payment, "alreadyRecorded": existed}


@app.get("/payments")
def list_payments(
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_principal),
):
    items, total = paginate(PAYMENTS, {}, page, size, sort="paidAt")
    return {"payments": items, "totalCount": total, "totalAmount": sum_field(PAYMENTS, "amount")}


# --- Blogs ---

@app.post("/blogs")
def create_blog(payload: BlogCreate, principal: Principal = Depends(get_principal)):
    data = {k: v for k, v in payload.model_dump().items() if not k.startswith(("_", "$"))}
    for key in ("status", "authorEmail", "createdAt"):
        data.pop(key, None)
    blog = Blog(**data, authorEmail=principal.email)
    return inserted(create_document(BLOGS, blog))


@app.get("/all-blogs")
def all_blogs(status: Optional[str] = None, staff: dict = Depends(require_staff)):
    query = {"status": status} if status and status not in PLACEHOLDERS else {}
    return get_documents(BLOGS, query)


@app.get("/published-blogs")
def published_blogs():
    return get_documents(BLOGS, {"status": "published"})


@app.patch("/blogs/status/{id}")
def update_blog_status(id: str, payload: BlogStatusUpdate, staff: dict = Depends(require_staff)):
    result = get_db()[BLOGS].update_one({"_id": parse_object_id(id)}, {"$set": {"status": payload.status}})
    return mutation_result(result)


@app.delete("/blogs/{id}")
def delete_blog(id: str, admin: dict = Depends(require_admin)):
    return mutation_result(get_db()[BLOGS].delete_one({"_id": parse_object_id(id)}))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
