"""
FastAPI dependencies for billing services.

Services are constructed once in ``create_app`` and stored on app.state.
"""

from fastapi import Request

from scribeledger.billing.checkout import SubscriptionCheckoutFactory
from scribeledger.billing.ledger import CreditLedger
from scribeledger.billing.payment_intents import PaymentIntentFactory
from scribeledger.billing.quota import QuotaEvaluator
from scribeledger.billing.usage_tracking import UsageRecorder
from scribeledger.billing.webhooks import SubscriptionReconciler
from scribeledger.storage.database import BillingDatabase


def get_billing_db(request: Request) -> BillingDatabase:
    return request.app.state.db


def get_credit_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_usage_recorder(request: Request) -> UsageRecorder:
    return request.app.state.usage_recorder


def get_quota_evaluator(request: Request) -> QuotaEvaluator:
    return request.app.state.quota_evaluator


def get_payment_intent_factory(request: Request) -> PaymentIntentFactory:
    return request.app.state.payment_intents


def get_reconciler(request: Request) -> SubscriptionReconciler:
    return request.app.state.reconciler


def get_checkout_factory(request: Request) -> SubscriptionCheckoutFactory:
    return request.app.state.checkout
