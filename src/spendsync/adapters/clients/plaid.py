from __future__ import annotations

from decimal import Decimal
import json
import os
from typing import Any, Literal, Protocol, Self, cast
import urllib.error
import urllib.request

from pydantic import BaseModel, Field, ValidationError

from spendsync.errors import ProviderError
from spendsync.models.transaction import RemovedTransaction, TransactionPayload

PlaidEnv = Literal["sandbox", "development", "production"]

MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"


class PlaidClientError(ProviderError):
    """Base error for Plaid client failures."""

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code)
        self.status = status


PLAID_ENV_MAP: dict[PlaidEnv, str] = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


class AggregatorClient(Protocol):
    """What the sync pipeline needs from an aggregator client."""

    def sync_transactions(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        count: int = 500,
    ) -> dict[str, Any]: ...


class PlaidBaseModel(BaseModel):
    """Shared base for Plaid response models with a short parse alias."""

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class PlaidErrorModel(PlaidBaseModel):
    error_type: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class PlaidTransactionModel(PlaidBaseModel):
    transaction_id: str
    account_id: str | None = None
    amount: Decimal
    iso_currency_code: str | None = None
    date: str
    name: str
    merchant_name: str | None = None
    pending: bool = False
    category: list[str] | None = None

    def to_typed(self) -> TransactionPayload:
        txn: TransactionPayload = {
            "transaction_id": self.transaction_id,
            "account_id": self.account_id,
            "amount": self.amount,
            "iso_currency_code": self.iso_currency_code,
            "date": self.date,
            "name": self.name,
            "merchant_name": self.merchant_name,
            "pending": self.pending,
            "category": self.category,
        }
        return txn


class RemovedTransactionModel(PlaidBaseModel):
    transaction_id: str

    def to_typed(self) -> RemovedTransaction:
        return {"transaction_id": self.transaction_id}


class TransactionsSyncResponse(PlaidBaseModel):
    added: list[PlaidTransactionModel] = Field(default_factory=list)
    modified: list[PlaidTransactionModel] = Field(default_factory=list)
    removed: list[RemovedTransactionModel] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False

    def to_sync_result(self, *, fallback_cursor: str | None) -> dict[str, Any]:
        return {
            "added": [txn.to_typed() for txn in self.added],
            "modified": [txn.to_typed() for txn in self.modified],
            "removed": [txn.to_typed() for txn in self.removed],
            "next_cursor": self.next_cursor or fallback_cursor,
            "has_more": self.has_more,
        }


class PlaidClient:
    def __init__(
        self,
        *,
        client_id: str,
        secret: str,
        env: PlaidEnv = "sandbox",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._client_id = client_id
        self._secret = secret
        self._env = env
        self._timeout_seconds = timeout_seconds

    @property
    def env(self) -> PlaidEnv:
        return self._env

    @classmethod
    def from_env(cls, *, timeout_seconds: float = 30.0) -> PlaidClient:
        """Construct a PlaidClient from environment variables.

        Required:
        - PLAID_CLIENT_ID
        - PLAID_ENV (defaults to sandbox)
        - PLAID_<ENV>_SECRET (e.g. PLAID_SANDBOX_SECRET), or PLAID_SECRET
        """
        env_str = os.getenv("PLAID_ENV", "sandbox").lower()
        if env_str not in PLAID_ENV_MAP:
            raise PlaidClientError(
                f"Invalid PLAID_ENV={env_str!r}. "
                "Expected one of: sandbox, development, production."
            )
        env: PlaidEnv = env_str  # type: ignore[assignment]

        client_id = cls._getenv_or_die("PLAID_CLIENT_ID")
        secret = cls._secret_from_env(env)
        return cls(
            client_id=client_id,
            secret=secret,
            env=env,
            timeout_seconds=timeout_seconds,
        )

    @staticmethod
    def _getenv_or_die(name: str) -> str:
        value = os.getenv(name)
        if not value:
            raise PlaidClientError(f"Missing required environment variable: {name}")
        return value

    @classmethod
    def _secret_from_env(cls, env: PlaidEnv) -> str:
        env_specific = os.getenv(f"PLAID_{env.upper()}_SECRET")
        if env_specific:
            return env_specific
        return cls._getenv_or_die("PLAID_SECRET")

    def _base_url(self) -> str:
        try:
            return PLAID_ENV_MAP[self._env]
        except KeyError as e:
            raise PlaidClientError(
                f"Unsupported Plaid environment: {self._env!r}"
            ) from e

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        """Parse JSON response from Plaid API.

        Amounts are parsed as Decimal so cents survive the round trip.

        Raises:
            PlaidClientError: If JSON parsing fails
        """
        try:
            return cast(dict[str, Any], json.loads(body, parse_float=Decimal))
        except json.JSONDecodeError as e:
            raise PlaidClientError(
                f"Failed to parse Plaid response as JSON: {e}: {body}"
            ) from e

    def _error_from_http(self, code: int, body: str) -> PlaidClientError:
        try:
            err = PlaidErrorModel.parse(json.loads(body))
        except (json.JSONDecodeError, ValidationError):
            return PlaidClientError(f"Plaid API error ({code}): {body}", status=code)
        message = err.error_message or body
        return PlaidClientError(
            f"Plaid API error ({code}, {err.error_code}): {message}",
            error_code=err.error_code,
            status=code,
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._base_url().rstrip("/") + path
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(  # noqa: S310
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(  # noqa: S310 - external HTTPS
                req, timeout=self._timeout_seconds
            ) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            err_body = e.read().decode("utf-8", "ignore")
            raise self._error_from_http(e.code, err_body) from e
        except urllib.error.URLError as e:  # pragma: no cover - network-dependent
            raise PlaidClientError(f"Network error calling Plaid API: {e}") from e
        except TimeoutError as e:  # pragma: no cover - network-dependent
            raise PlaidClientError(
                f"Plaid API call timed out after {self._timeout_seconds}s"
            ) from e

        return self._parse_json_response(body)

    def sync_transactions(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        count: int = 500,
    ) -> dict[str, Any]:
        """Thin wrapper around Plaid's /transactions/sync endpoint.

        The cursor is omitted from the request when None (first sync).
        """
        payload: dict[str, Any] = {
            "client_id": self._client_id,
            "secret": self._secret,
            "access_token": access_token,
            "count": count,
        }
        if cursor is not None:
            payload["cursor"] = cursor

        raw = self._post("/transactions/sync", payload)
        try:
            resp = TransactionsSyncResponse.parse(raw)
        except ValidationError as e:
            raise PlaidClientError(f"Unexpected /transactions/sync payload: {e}") from e
        return resp.to_sync_result(fallback_cursor=cursor)
