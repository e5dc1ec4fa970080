# giftfund/features/contributions/payment_gateway.py

# Payment gateway port used by the contribution ledger.
# initiate() only starts a payment; the outcome arrives later through
# confirm_contribution_payment (M-PESA callback, admin, or the simulation task).

import asyncio
import base64
import datetime
from typing import Any, Dict, Optional, Protocol

import requests
from pydantic import BaseModel, Field

from ...config.settings import Settings
from ...shared.errors import ExternalServiceError


class PaymentInitiation(BaseModel):
    """What the gateway reports back when a payment has been started."""
    reference: str # Contribution id
    payment_method: str
    amount: float
    status: str = "pending"
    provider: str = "simulation"
    simulated: bool = True
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    response_code: Optional[str] = None
    response_description: Optional[str] = None
    # Stored on the contribution as <method>_details.
    details: Dict[str, Any] = Field(default_factory=dict)


class PaymentGateway(Protocol):
    async def initiate(self, contribution: Dict[str, Any], event: Dict[str, Any], phone_number: Optional[str] = None) -> PaymentInitiation:
        ...


def _initial_details(payment_method: str, phone_number: Optional[str]) -> Dict[str, Any]:
    if payment_method == "mpesa":
        return {
            "phone_number": phone_number,
            "transaction_code": None,
            "response_code": "0",
            "response_description": "Payment initiated",
        }
    if payment_method == "card":
        return {"last4": None, "brand": None, "charge_id": None}
    return {"order_id": None, "payer_email": None}


class SimulatedPaymentGateway:
    """Accepts every payment request. The contribution is confirmed later by the simulation task."""

    async def initiate(self, contribution: Dict[str, Any], event: Dict[str, Any], phone_number: Optional[str] = None) -> PaymentInitiation:
        method = contribution["payment_method"]
        return PaymentInitiation(
            reference=str(contribution["_id"]),
            payment_method=method,
            amount=float(contribution["amount"]),
            details=_initial_details(method, phone_number),
        )


class MpesaGateway:
    """
    M-PESA Daraja STK push client.
    Card and PayPal have no processor integration here; they are accepted as
    pending references like in the simulated gateway, without auto-confirmation.
    """

    def __init__(self, settings: Settings):
        self.base_url = settings.MPESA_API_URL.rstrip("/")
        self.consumer_key = settings.MPESA_CONSUMER_KEY
        self.consumer_secret = settings.MPESA_CONSUMER_SECRET
        self.passkey = settings.MPESA_PASSKEY
        self.shortcode = settings.MPESA_SHORTCODE
        self.callback_url = settings.MPESA_CALLBACK_URL
        self.timeout = settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS

    def _get_access_token(self) -> str:
        response = requests.get(
            f"{self.base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
            timeout=self.timeout,
        )
        response.raise_for_status()
        access_token = response.json().get("access_token")
        if not access_token:
            raise ExternalServiceError("M-PESA did not return an access token.")
        return access_token

    def _stk_push(self, phone_number: str, amount: float, account_reference: str, description: str) -> Dict[str, Any]:
        """Blocking STK push request. Run it through asyncio.to_thread."""
        access_token = self._get_access_token()
        timestamp = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
        password = base64.b64encode(f"{self.shortcode}{self.passkey}{timestamp}".encode()).decode()
        msisdn = phone_number.lstrip("+")

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(round(amount)),
            "PartyA": msisdn,
            "PartyB": self.shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }
        response = requests.post(
            f"{self.base_url}/mpesa/stkpush/v1/processrequest",
            json=payload,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    async def initiate(self, contribution: Dict[str, Any], event: Dict[str, Any], phone_number: Optional[str] = None) -> PaymentInitiation:
        method = contribution["payment_method"]
        reference = str(contribution["_id"])
        details = _initial_details(method, phone_number)

        if method != "mpesa":
            return PaymentInitiation(
                reference=reference,
                payment_method=method,
                amount=float(contribution["amount"]),
                provider=method,
                simulated=False,
                details=details,
            )

        print(f"Initiating M-PESA STK push for contribution {reference}.")
        try:
            result = await asyncio.to_thread(
                self._stk_push,
                phone_number or "",
                float(contribution["amount"]),
                reference,
                f"Contrib {(event.get('title') or '')[:8]}",
            )
        except requests.Timeout as e:
            print(f"Error: M-PESA request timed out for contribution {reference}: {e}")
            raise ExternalServiceError("M-PESA did not respond in time.")
        except requests.RequestException as e:
            print(f"Error: M-PESA request failed for contribution {reference}: {e}")
            raise ExternalServiceError("M-PESA payment could not be initiated.")
        except ValueError as e:
            # Raised by response.json() on a non-JSON body.
            print(f"Error: M-PESA returned a malformed response for contribution {reference}: {e}")
            raise ExternalServiceError("M-PESA returned a malformed response.")

        checkout_request_id = result.get("CheckoutRequestID")
        if not checkout_request_id:
            print(f"Error: M-PESA response for contribution {reference} has no CheckoutRequestID: {result}")
            raise ExternalServiceError("M-PESA rejected the payment request.", extra={"provider_response": result.get("errorMessage") or result.get("ResponseDescription")})

        details.update({
            "checkout_request_id": checkout_request_id,
            "merchant_request_id": result.get("MerchantRequestID"),
            "response_code": result.get("ResponseCode"),
            "response_description": result.get("ResponseDescription"),
        })
        return PaymentInitiation(
            reference=reference,
            payment_method=method,
            amount=float(contribution["amount"]),
            provider="mpesa",
            simulated=False,
            checkout_request_id=checkout_request_id,
            merchant_request_id=result.get("MerchantRequestID"),
            response_code=result.get("ResponseCode"),
            response_description=result.get("ResponseDescription"),
            details=details,
        )


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    """Real M-PESA when enabled and configured, the simulation otherwise."""
    if settings.ENABLE_REAL_MPESA:
        if settings.MPESA_CONSUMER_KEY and settings.MPESA_CONSUMER_SECRET and settings.MPESA_PASSKEY:
            print("Payment gateway: M-PESA Daraja.")
            return MpesaGateway(settings)
        print("Warning: ENABLE_REAL_MPESA is set but M-PESA credentials are missing. Using payment simulation.")
    print("Payment gateway: simulation.")
    return SimulatedPaymentGateway()
