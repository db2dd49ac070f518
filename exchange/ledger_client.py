"""
Loyalty-points ledger kept on the Shopify customer record.

The balance lives in a customer metafield (``loyalty.points`` by default) whose
value is a decimal string. The client performs the mechanical get-then-set;
deciding how many points to add is the lifecycle service's business.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

import httpx

from .cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2023-07"


class LedgerErrorCode:
    CUSTOMER_NOT_FOUND = "LEDGER_CUSTOMER_NOT_FOUND"
    API_ERROR = "LEDGER_API_ERROR"
    RATE_LIMIT = "LEDGER_RATE_LIMIT"
    AUTHENTICATION = "LEDGER_AUTHENTICATION_ERROR"
    NOT_FOUND = "LEDGER_RESOURCE_NOT_FOUND"
    VALIDATION = "LEDGER_VALIDATION_ERROR"


class LedgerError(Exception):
    code = LedgerErrorCode.API_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation


class CustomerNotFoundError(LedgerError):
    code = LedgerErrorCode.CUSTOMER_NOT_FOUND


class LedgerNotFoundError(LedgerError):
    code = LedgerErrorCode.NOT_FOUND


class LedgerAuthenticationError(LedgerError):
    code = LedgerErrorCode.AUTHENTICATION


class LedgerRateLimitError(LedgerError):
    code = LedgerErrorCode.RATE_LIMIT


class LedgerValidationError(LedgerError):
    code = LedgerErrorCode.VALIDATION


@dataclass(frozen=True)
class CustomerRef:
    id: str
    email: str


@dataclass
class CustomerPoints:
    amount: int
    currency: str = "INR"
    customer_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


class LedgerClient(Protocol):
    def find_customer_by_email(self, email: str, bypass_cache: bool = False) -> CustomerRef: ...

    def get_points_balance(self, customer_id: str) -> int: ...

    def add_points(self, customer_id: str, delta: int) -> int: ...

    def get_customer_points(self, identity: str) -> CustomerPoints: ...


def parse_points(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


class ShopifyLedgerClient:
    def __init__(
        self,
        store_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        cache: Optional[TTLCache] = None,
        namespace: str = "loyalty",
        key: str = "points",
        currency: str = "INR",
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        if not store_url:
            raise ValueError("Shopify store URL is not configured")
        if not access_token:
            raise ValueError("Shopify access token is not configured")
        self.base_url = f"{store_url.rstrip('/')}/admin/api/{api_version}"
        self._access_token = access_token
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=60)
        self.namespace = namespace
        self.key = key
        self.currency = currency
        self._http = http_client or httpx.Client(timeout=timeout)

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._access_token,
        }

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, operation: str, **kwargs) -> dict:
        url = f"{self.base_url}/{path}"
        try:
            response = self._http.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Shopify %s network error: %s", operation, e)
            raise LedgerError(f"Shopify {operation} failed: {e}", operation=operation) from e

        if response.is_success:
            return response.json()
        raise self._classify_error(response, operation)

    def _classify_error(self, response: httpx.Response, operation: str) -> LedgerError:
        status = response.status_code
        if status == 404:
            error = LedgerNotFoundError(f"Resource not found: {operation}", status, operation)
        elif status in (401, 403):
            error = LedgerAuthenticationError("Authentication or permission error", status, operation)
        elif status == 422:
            try:
                detail = response.json().get("errors") or "Validation error"
            except ValueError:
                detail = "Validation error"
            error = LedgerValidationError(str(detail), status, operation)
        elif status == 429:
            error = LedgerRateLimitError("Rate limit exceeded", status, operation)
        else:
            error = LedgerError(f"Shopify {operation} failed with HTTP {status}", status, operation)

        logger.error("Shopify %s error: %s", operation, error, extra={"code": error.code, "status": status})
        return error

    def find_customer_by_email(self, email: str, bypass_cache: bool = False) -> CustomerRef:
        if not bypass_cache:
            cached = self.cache.get(email)
            if cached is not None:
                logger.debug("Using cached Shopify customer for %s", email)
                return cached

        logger.info("Looking up Shopify customer", extra={"email": email})
        try:
            data = self._request(
                "GET", "customers/search.json", "customer lookup",
                params={"query": f"email:{email}"},
            )
        except LedgerNotFoundError as e:
            raise CustomerNotFoundError(
                f"Shopify customer with email {email} not found", e.status_code, "customer lookup"
            ) from e

        customers = data.get("customers") or []
        if not customers:
            logger.warning("No Shopify customer found with email %s", email)
            raise CustomerNotFoundError(f"Shopify customer with email {email} not found")

        customer = customers[0]
        ref = CustomerRef(id=str(customer["id"]), email=customer.get("email") or email)
        self.cache.set(email, ref)
        return ref

    def _points_metafield(self, customer_id: str) -> Optional[dict]:
        data = self._request(
            "GET", f"customers/{customer_id}/metafields.json", "get loyalty points",
            params={"namespace": self.namespace, "key": self.key},
        )
        for metafield in data.get("metafields") or []:
            if metafield.get("namespace") == self.namespace and metafield.get("key") == self.key:
                return metafield
        return None

    def get_points_balance(self, customer_id: str) -> int:
        metafield = self._points_metafield(str(customer_id))
        return parse_points(metafield["value"]) if metafield else 0

    def add_points(self, customer_id: str, delta: int) -> int:
        customer_id = str(customer_id)
        metafield = self._points_metafield(customer_id)
        current = parse_points(metafield["value"]) if metafield else 0
        new_total = current + int(delta)
        logger.info(
            "Updating loyalty points for customer %s: %s + %s = %s",
            customer_id, current, delta, new_total,
        )

        if metafield:
            data = self._request(
                "PUT", f"customers/{customer_id}/metafields/{metafield['id']}.json",
                "update loyalty points",
                json={"metafield": {
                    "id": metafield["id"],
                    "value": str(new_total),
                    "type": "number_integer",
                }},
            )
        else:
            data = self._request(
                "POST", f"customers/{customer_id}/metafields.json",
                "update loyalty points",
                json={"metafield": {
                    "namespace": self.namespace,
                    "key": self.key,
                    "value": str(new_total),
                    "type": "number_integer",
                    "description": "Loyalty points from exchanges",
                }},
            )
        stored = (data.get("metafield") or {}).get("value")
        return parse_points(stored) if stored is not None else new_total

    def get_customer_points(self, identity: Union[str, int]) -> CustomerPoints:
        customer_id = str(identity)
        if "@" in customer_id:
            try:
                customer_id = self.find_customer_by_email(customer_id).id
            except CustomerNotFoundError as e:
                return CustomerPoints(amount=0, currency=self.currency, error=str(e), code=e.code)
        return CustomerPoints(
            amount=self.get_points_balance(customer_id),
            currency=self.currency,
            customer_id=customer_id,
        )


class InMemoryLedgerClient:
    """Process-local ledger for development and tests, same contract as the Shopify client."""

    def __init__(self, currency: str = "INR"):
        self.currency = currency
        self.customers: dict[str, CustomerRef] = {}
        self.balances: dict[str, int] = {}
        self.fail_writes = False
        self.write_count = 0
        self._next_id = 1000

    def add_customer(self, email: str, balance: int = 0) -> CustomerRef:
        ref = CustomerRef(id=str(self._next_id), email=email)
        self._next_id += 1
        self.customers[email] = ref
        self.balances[ref.id] = balance
        return ref

    def find_customer_by_email(self, email: str, bypass_cache: bool = False) -> CustomerRef:
        ref = self.customers.get(email)
        if ref is None:
            raise CustomerNotFoundError(f"Ledger customer with email {email} not found")
        return ref

    def get_points_balance(self, customer_id: str) -> int:
        return self.balances.get(str(customer_id), 0)

    def add_points(self, customer_id: str, delta: int) -> int:
        if self.fail_writes:
            raise LedgerError("Ledger write rejected", status_code=503, operation="update loyalty points")
        customer_id = str(customer_id)
        self.balances[customer_id] = self.balances.get(customer_id, 0) + int(delta)
        self.write_count += 1
        return self.balances[customer_id]

    def get_customer_points(self, identity: Union[str, int]) -> CustomerPoints:
        customer_id = str(identity)
        if "@" in customer_id:
            try:
                customer_id = self.find_customer_by_email(customer_id).id
            except CustomerNotFoundError as e:
                return CustomerPoints(amount=0, currency=self.currency, error=str(e), code=e.code)
        return CustomerPoints(
            amount=self.get_points_balance(customer_id),
            currency=self.currency,
            customer_id=customer_id,
        )
