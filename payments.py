"""Stripe Checkout integration and payment recording."""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

import stripe
from pymongo.errors import DuplicateKeyError

import config
from database import PAYMENTS, get_db, serialize
from schemas import Payment

log = logging.getLogger(__name__)

CURRENCY = "usd"


def to_minor_units(amount) -> int:
    """20 -> 2000, "12.345" -> 1235."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_checkout_session(amount, donor_email: str, donor_name: Optional[str] = None):
    stripe.api_key = config.STRIPE_SECRET_KEY
    return stripe.checkout.Session.create(
        mode="payment",
        payment_method_types=["card"],
        line_items=[{
            "price_data": {
                "currency": CURRENCY,
                "unit_amount": to_minor_units(amount),
                "product_data": {"name": "Donation to the blood donation fund"},
            },
            "quantity": 1,
        }],
        customer_email=donor_email,
        metadata={"donorName": donor_name or "Anonymous", "donorEmail": donor_email},
        success_url=f"{config.SITE_DOMAIN}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{config.SITE_DOMAIN}/funding",
    )


def retrieve_session(session_id: str):
    stripe.api_key = config.STRIPE_SECRET_KEY
    return stripe.checkout.Session.retrieve(session_id)


def payment_from_session(session) -> Payment:
    metadata = getattr(session, "metadata", None)
    email = getattr(session, "customer_email", None) or getattr(metadata, "donorEmail", None)
    intent = session.payment_intent
    return Payment(
        amount=session.amount_total / 100.0,
        donorEmail=email,
        donorName=getattr(metadata, "donorName", None) or "Anonymous",
        transactionId=intent if isinstance(intent, str) else intent.id,
    )


def record_payment(payment: Payment) -> Tuple[dict, bool]:
    """Insert the payment once per transaction id.

    Returns the stored document and whether it already existed. The write is
    a conditional upsert on ``transactionId`` and the collection carries a
    unique index on that field, so concurrent confirmations of the same
    transaction leave one record.
    """
    collection = get_db()[PAYMENTS]
    query = {"transactionId": payment.transactionId}
    try:
        result = collection.update_one(
            query, {"$setOnInsert": payment.model_dump(exclude_none=True)}, upsert=True
        )
        created = result.upserted_id is not None
    except DuplicateKeyError:
        # lost the race to a concurrent upsert
        created = False
    if created:
        log.info("Recorded payment %s", payment.transactionId)
    else:
        log.info("Payment %s already recorded", payment.transactionId)
    return serialize(collection.find_one(query)), not created
