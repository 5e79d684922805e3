"""
Package upgrades paid through Stripe Checkout.

Confirmed sessions are recorded in the "payment" collection, so confirming
the same session twice applies the package once.
"""

import logging
import os
from typing import Dict, Optional
from urllib.parse import urlencode

import stripe
from pymongo.database import Database

from database import create_document, get_documents, now, parse_object_id, serialize
from errors import NotFound, UpstreamPaymentError, ValidationError
from schemas import PACKAGE, PAYMENT, USER, Package, Payment

logger = logging.getLogger(__name__)

stripe.api_key = os.getenv("STRIPE_SECRET", "")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
CURRENCY = "usd"


def list_packages(db: Database):
    return get_documents(db, PACKAGE, sort=[("price", 1)])


def get_package(db: Database, package_id: Optional[str]) -> Dict:
    pkg = db[PACKAGE].find_one({"_id": parse_object_id(package_id, "packageId")})
    if not pkg:
        raise NotFound("Package not found")
    return pkg


def apply_package(db: Database, hr_email: str, pkg: Dict) -> None:
    package = Package.model_validate(pkg)
    result = db[USER].update_one(
        {"email": hr_email, "role": "hr"},
        {"$set": {"package": package.name, "package_limit": package.employee_limit, "updated_at": now()}},
    )
    if result.matched_count == 0:
        raise NotFound("HR not found")
    logger.info("Package %s (limit %s) applied to %s", package.name, package.employee_limit, hr_email)


def create_checkout_session(db: Database, hr_email: str, package_id: str) -> Dict:
    if not hr_email:
        raise ValidationError("hrEmail is required")
    pkg = get_package(db, package_id)

    if not pkg.get("price"):
        apply_package(db, hr_email, pkg)
        return {"free": True, "package_name": pkg["name"]}

    query = urlencode({"hrEmail": hr_email, "packageId": package_id})
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": CURRENCY,
                    "product_data": {"name": f"AssetVerse {pkg['name']} Package"},
                    "unit_amount": int(round(pkg["price"] * 100)),
                },
                "quantity": 1,
            }],
            mode="payment",
            customer_email=hr_email,
            metadata={"hr_email": hr_email, "package_id": str(pkg["_id"])},
            # Stripe fills in the placeholder itself
            success_url=f"{CLIENT_URL}/packageUpgrade/upgrade-success?session_id={{CHECKOUT_SESSION_ID}}&{query}",
            cancel_url=f"{CLIENT_URL}/packageUpgrade/upgrade-cancel",
        )
    except stripe.StripeError as e:
        logger.error("Checkout session for %s failed", hr_email, exc_info=True)
        raise UpstreamPaymentError(f"Stripe error: {e.user_message or 'checkout failed'}")
    return {"url": session.url}


def confirm_payment(db: Database, session_id: Optional[str], package_id: Optional[str], hr_email: Optional[str]) -> Dict:
    if not session_id or not package_id or not hr_email:
        raise ValidationError("Missing parameters")

    done = db[PAYMENT].find_one({"session_id": session_id})
    if done:
        return {"success": True, "package_name": done["package_name"], "already_applied": True}

    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError:
        logger.error("Could not retrieve checkout session %s", session_id, exc_info=True)
        raise UpstreamPaymentError("Payment verification failed")
    if session.payment_status != "paid":
        raise UpstreamPaymentError("Payment not completed", status_code=402)

    # the session, not the query string, says what was bought and for whom
    metadata = session.metadata or {}
    paid_for = (metadata.get("hr_email"), metadata.get("package_id"))
    if paid_for != (hr_email, str(parse_object_id(package_id, "packageId"))):
        logger.warning("Session %s was paid for %s, not %s/%s", session_id, paid_for, hr_email, package_id)
        raise UpstreamPaymentError("Payment does not match this package", status_code=400)

    pkg = get_package(db, package_id)
    if session.amount_total != int(round(pkg["price"] * 100)):
        raise UpstreamPaymentError("Paid amount does not match the package price", status_code=400)
    apply_package(db, hr_email, pkg)
    record = Payment(
        session_id=session_id,
        hr_email=hr_email,
        package_id=str(pkg["_id"]),
        package_name=pkg["name"],
        amount=session.amount_total / 100,
    )
    create_document(db, PAYMENT, record.model_dump())
    return {"success": True, "package_name": pkg["name"], "already_applied": False}


def get_package_public(db: Database, package_id: str) -> Dict:
    return serialize(get_package(db, package_id))
