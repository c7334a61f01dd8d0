"""CoinGecko price feed for batched id and contract-address lookups."""

import logging
import math
import random
import re
import time as time_module
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from integrations.exceptions import PriceFeedError
from integrations.market_data_protocol import PriceBatchResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

PRICE_ID_BATCH_SIZE = 50
TOKEN_PRICE_BATCH_SIZE = 50
# When a multi-id batch fails, at most this many ids are retried one by one
FALLBACK_SINGLE_ID_LIMIT = 10

_MAX_ATTEMPTS = 5
_BASE_DELAY_SECONDS = 1.0
_MAX_JITTER_SECONDS = 0.2

_VALID_ID_RE = re.compile(r"^[a-z0-9-]+$")


def normalize_coingecko_id(raw: Optional[str]) -> Optional[str]:
    """Trim and lower-case a CoinGecko id; return None if it is not valid."""
    if not raw:
        return None
    normalized = raw.strip().lower()
    if not _VALID_ID_RE.match(normalized):
        return None
    return normalized


def backoff_delay(attempt: int) -> float:
    """Exponential backoff in seconds for a zero-based attempt, with jitter."""
    return _BASE_DELAY_SECONDS * (2 ** attempt) + random.uniform(0, _MAX_JITTER_SECONDS)


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Parse a delta-seconds ``Retry-After`` header, if present and sane."""
    header = response.headers.get("retry-after")
    if header is None:
        return None
    try:
        value = float(header)
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def _to_decimal_string(value) -> Optional[str]:
    """Convert a JSON number to a plain decimal string; None if unusable."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    try:
        return format(Decimal(str(value)), "f")
    except InvalidOperation:
        return None


class CoinGeckoClient:
    """Price feed backed by the CoinGecko ``/simple`` endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        request_timeout: float = 10.0,
        pipeline_timeout: float = 20.0,
    ):
        """Initialize with optional API key and timeouts.

        Args:
            api_key: CoinGecko demo API key. If provided, uses the
                     x-cg-demo-api-key header for higher rate limits.
                     If None, uses the keyless public API.
            base_url: API root, overridable for the pro endpoint.
            request_timeout: Per-request timeout in seconds.
            pipeline_timeout: Budget in seconds after which no new batch
                     starts, used when the caller passes no deadline.
        """
        headers: dict[str, str] = {"accept": "application/json"}
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=request_timeout,
        )
        self._pipeline_timeout = pipeline_timeout

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    @property
    def provider_name(self) -> str:
        return "coingecko"

    def _resolve_deadline(self, deadline: Optional[float]) -> float:
        if deadline is not None:
            return deadline
        return time_module.monotonic() + self._pipeline_timeout

    @staticmethod
    def _wait(delay: float, deadline: float) -> bool:
        """Sleep ``delay`` seconds, capped at the time left before ``deadline``.

        Returns False without sleeping when the deadline has already passed.
        """
        remaining = deadline - time_module.monotonic()
        if remaining <= 0:
            return False
        time_module.sleep(min(delay, remaining))
        return True

    def _request_with_retry(
        self,
        path: str,
        params: dict[str, str],
        deadline: float,
    ) -> httpx.Response:
        """GET ``path`` with up to five attempts.

        429 waits for ``Retry-After`` (or exponential backoff), transport
        errors and 5xx back off and retry, any other 4xx gives up at once.
        No wait runs past ``deadline``.

        Raises:
            PriceFeedError: When no attempt produced a 2xx response.
        """
        last_status: Optional[int] = None
        for attempt in range(_MAX_ATTEMPTS):
            is_last = attempt == _MAX_ATTEMPTS - 1
            try:
                response = self._client.request("GET", path, params=params)
            except httpx.TransportError as e:
                last_status = None
                logger.warning(
                    "CoinGecko: %s failed (%s), attempt %d/%d",
                    path, e.__class__.__name__, attempt + 1, _MAX_ATTEMPTS,
                )
                if is_last or not self._wait(backoff_delay(attempt), deadline):
                    break
                continue

            status = response.status_code
            if response.is_success:
                return response
            last_status = status

            if status == 429:
                delay = _retry_after_seconds(response)
                if delay is None:
                    delay = backoff_delay(attempt)
                logger.warning(
                    "CoinGecko: rate limited, retrying in %.1fs (attempt %d/%d)",
                    delay, attempt + 1, _MAX_ATTEMPTS,
                )
                if is_last or not self._wait(delay, deadline):
                    break
                continue

            if 400 <= status < 500:
                raise PriceFeedError(
                    f"CoinGecko request failed ({status})", status_code=status
                )

            logger.warning(
                "CoinGecko: %s returned %d, attempt %d/%d",
                path, status, attempt + 1, _MAX_ATTEMPTS,
            )
            if is_last or not self._wait(backoff_delay(attempt), deadline):
                break

        raise PriceFeedError(
            f"CoinGecko request failed ({last_status or 'no response'})",
            status_code=last_status,
        )

    def _get_json(self, path: str, params: dict[str, str], deadline: float) -> dict:
        """GET ``path`` and return its JSON object body.

        Raises:
            PriceFeedError: On a failed request, or a body that is not a
                JSON object.
        """
        response = self._request_with_retry(path, params, deadline)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise PriceFeedError(
                f"CoinGecko returned an unreadable body for {path}",
                status_code=response.status_code,
            )
        return payload

    def _simple_price(self, ids: list[str], vs_currency: str, deadline: float) -> dict:
        return self._get_json(
            "/simple/price",
            {"ids": ",".join(ids), "vs_currencies": vs_currency},
            deadline,
        )

    @staticmethod
    def _collect(payload: dict, keys: list[str], vs_currency: str, into: dict[str, str]) -> None:
        for key in keys:
            entry = payload.get(key)
            if not isinstance(entry, dict):
                continue
            price = _to_decimal_string(entry.get(vs_currency))
            if price is not None:
                into[key] = price

    def get_prices_by_ids(
        self,
        ids: list[str],
        quote_currency: str,
        deadline: Optional[float] = None,
    ) -> PriceBatchResult:
        """Fetch prices for CoinGecko coin ids in batches of 50.

        Ids are normalized and de-duplicated; invalid ids are dropped. A
        failed multi-id batch is retried id by id (first 10 ids only).

        Args:
            ids: CoinGecko coin ids (e.g. ["bitcoin", "usd-coin"]).
            quote_currency: ISO currency code (case-insensitive).
            deadline: ``time.monotonic()`` value after which no new request
                starts.

        Returns:
            PriceBatchResult keyed by normalized id.

        Raises:
            PriceFeedError: If not a single request succeeded.
        """
        result = PriceBatchResult()
        unique_ids = list(dict.fromkeys(
            normalized for normalized in (normalize_coingecko_id(i) for i in ids)
            if normalized
        ))
        if not unique_ids:
            return result

        vs_currency = quote_currency.lower()
        deadline = self._resolve_deadline(deadline)
        any_success = False
        last_error: Optional[PriceFeedError] = None

        logger.info(
            "CoinGecko: fetching %s prices for %d ids", quote_currency, len(unique_ids)
        )

        for start in range(0, len(unique_ids), PRICE_ID_BATCH_SIZE):
            if time_module.monotonic() > deadline:
                remaining = unique_ids[start:]
                logger.warning(
                    "CoinGecko: price budget exhausted, %d ids not requested", len(remaining)
                )
                result.errors.append(
                    f"Price budget exhausted before {len(remaining)} ids were requested"
                )
                result.failed_ids.extend(remaining)
                break

            batch = unique_ids[start:start + PRICE_ID_BATCH_SIZE]
            try:
                payload = self._simple_price(batch, vs_currency, deadline)
            except PriceFeedError as e:
                last_error = e
                result.errors.append(str(e))
                if len(batch) == 1:
                    result.failed_ids.extend(batch)
                    continue
                logger.warning(
                    "CoinGecko: batch of %d ids failed (%s), retrying individually",
                    len(batch), e,
                )
                succeeded, individual_error = self._fetch_individually(
                    batch, vs_currency, deadline, result
                )
                any_success = any_success or succeeded
                last_error = individual_error or last_error
                continue

            any_success = True
            self._collect(payload, batch, vs_currency, result.prices)

        if not any_success:
            if last_error is not None:
                raise last_error
            raise PriceFeedError("; ".join(result.errors) or "CoinGecko returned no prices")

        return result

    def _fetch_individually(
        self,
        batch: list[str],
        vs_currency: str,
        deadline: float,
        result: PriceBatchResult,
    ) -> tuple[bool, Optional[PriceFeedError]]:
        """Retry a failed batch one id at a time.

        Returns:
            Whether any call succeeded, and the last error seen
        """
        any_success = False
        last_error: Optional[PriceFeedError] = None
        for index, coin_id in enumerate(batch):
            if index >= FALLBACK_SINGLE_ID_LIMIT or time_module.monotonic() > deadline:
                result.failed_ids.extend(batch[index:])
                break
            try:
                payload = self._simple_price([coin_id], vs_currency, deadline)
            except PriceFeedError as e:
                last_error = e
                result.errors.append(f"{coin_id}: {e}")
                result.failed_ids.append(coin_id)
                continue
            any_success = True
            self._collect(payload, [coin_id], vs_currency, result.prices)
        return any_success, last_error

    def get_token_prices(
        self,
        platform: str,
        contracts: list[str],
        quote_currency: str,
        deadline: Optional[float] = None,
    ) -> PriceBatchResult:
        """Fetch prices by contract address (or SPL mint) on a platform.

        Best effort: failed batches are reported in ``errors`` and
        ``failed_ids``, never raised. Result keys are lower-cased.
        """
        result = PriceBatchResult()
        unique_contracts = list(dict.fromkeys(c.strip() for c in contracts if c and c.strip()))
        if not unique_contracts:
            return result

        vs_currency = quote_currency.lower()
        deadline = self._resolve_deadline(deadline)

        for start in range(0, len(unique_contracts), TOKEN_PRICE_BATCH_SIZE):
            if time_module.monotonic() > deadline:
                result.failed_ids.extend(c.lower() for c in unique_contracts[start:])
                result.errors.append(f"{platform}: price budget exhausted")
                break

            batch = unique_contracts[start:start + TOKEN_PRICE_BATCH_SIZE]
            try:
                payload = self._get_json(
                    f"/simple/token_price/{platform}",
                    {"contract_addresses": ",".join(batch), "vs_currencies": vs_currency},
                    deadline,
                )
            except PriceFeedError as e:
                logger.warning(
                    "CoinGecko: token price batch on %s failed: %s", platform, e
                )
                result.errors.append(f"{platform}: {e}")
                result.failed_ids.extend(c.lower() for c in batch)
                continue

            lowered = {str(k).lower(): v for k, v in payload.items()}
            self._collect(lowered, list(lowered), vs_currency, result.prices)

        return result
