# giftfund/shared/dependencies.py

# FastAPI dependencies that hand collaborators stored on app.state to the routes.
# Tests swap the collaborators on app.state.

from fastapi import Request

from .notifications import NoOpNotifier, NotificationPort
from ..config.settings import settings
from ..features.contributions.payment_gateway import PaymentGateway, build_payment_gateway


def get_notifier(request: Request) -> NotificationPort:
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        print("Warning: No notifier configured on app.state. Notifications are dropped.")
        return NoOpNotifier()
    return notifier


def get_payment_gateway(request: Request) -> PaymentGateway:
    """Returns the gateway built on startup, building one from settings if startup did not run."""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        gateway = build_payment_gateway(settings)
        request.app.state.payment_gateway = gateway
    return gateway
