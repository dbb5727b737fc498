"""HTTP client for the recovery API used by the import job and orchestrator."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Sequence

import httpx

from npatrack.errors import AssignmentError, NpaTrackError, error_for_kind
from npatrack.services.customers.models import (
    AssignmentResult,
    BulkUpsertResult,
    CustomerPage,
    CustomerRecord,
    GeoPoint,
    SummaryStats,
)
from npatrack.services.imports.unassigned import AssignedKeys
from npatrack.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-KEY"


def _jsonable(payload: Any) -> Any:
    return json.loads(json.dumps(payload, default=str))


def _envelope(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text or response.reason_phrase}
    return body if isinstance(body, dict) else {"message": str(body)}


class RecoveryApiClient:
    """Thin synchronous wrapper over the customer endpoints.

    Error envelopes are turned back into the matching :mod:`npatrack.errors`
    exception. Any ``httpx.Client`` works as the transport, including
    FastAPI's ``TestClient``.
    """

    def __init__(
        self,
        http: httpx.Client | None = None,
        *,
        settings: Settings | None = None,
        api_key: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._api_key = api_key or self._settings.api.key
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=self._settings.api.base_url,
            timeout=self._settings.api.timeout_seconds,
        )

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "RecoveryApiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_customers(self, **params: Any) -> CustomerPage:
        """Fetch one page of ``GET /customers``; keyword names are the wire names."""

        query = {key: value for key, value in params.items() if value is not None}
        response = self._request("GET", "/customers", params=query)
        return CustomerPage.model_validate(response.json())

    def fetch_assigned_keys(self, *, page_size: int | None = None) -> AssignedKeys:
        """Page through assigned records and collect their keys."""

        limit = page_size or self._settings.ingestion.assigned_page_size
        record_ids: List[str] = []
        account_numbers: List[str] = []
        page = 1
        while True:
            result = self.list_customers(assigned="true", page=page, limit=limit, sortBy="recordId", sortOrder="asc")
            for record in result.customers:
                record_ids.append(record.record_id)
                account_numbers.append(record.account_number)
            if page >= result.total_pages or not result.customers:
                break
            page += 1
        LOGGER.info("Fetched %s assigned records across %s page(s)", len(record_ids), page)
        return AssignedKeys.from_values(record_ids, account_numbers)

    def get_customer(self, record_id: str) -> CustomerRecord:
        response = self._request("GET", f"/customers/{record_id}")
        return CustomerRecord.model_validate(response.json())

    def summary_stats(self) -> SummaryStats:
        response = self._request("GET", "/customers/stats/summary")
        return SummaryStats.model_validate(response.json())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def bulk_upsert(self, records: Sequence[Mapping[str, Any]]) -> BulkUpsertResult:
        """Send ``records`` to ``POST /customers/bulk``.

        A ``207`` multi-status response is returned as a ``partial`` result,
        not raised.
        """

        response = self._request("POST", "/customers/bulk", json=_jsonable(list(records)))
        body = response.json()
        failed_entries = body.get("failedEntries") or []
        return BulkUpsertResult.model_validate(
            {
                "status": "partial" if response.status_code == 207 or failed_entries else "complete",
                "successCount": body.get("successCount", 0),
                "failedCount": body.get("failedCount", len(failed_entries)),
                "failedEntries": failed_entries,
                "customerIds": body.get("customerIds") or [],
            }
        )

    def assign_by_ids(self, record_ids: Sequence[str], owner_id: str, *, reassign: bool = False) -> AssignmentResult:
        """Bind ``record_ids`` to ``owner_id``.

        Raises:
            AssignmentError: On any rejection; ``created_ids`` echoes ``record_ids``.
        """

        body = {"userId": owner_id, "customerIds": list(record_ids), "reassign": reassign}
        return self._assign("/customers/assign", body, owner_id=owner_id, record_ids=record_ids)

    def assign_by_branch(self, branch: str, owner_id: str, *, reassign: bool = False) -> AssignmentResult:
        body = {"userId": owner_id, "branch": branch, "reassign": reassign}
        return self._assign("/customers/assign-branch", body, owner_id=owner_id, record_ids=())

    def append_location(self, record_id: str, *, lat: float, lng: float) -> GeoPoint:
        response = self._request("POST", f"/customers/{record_id}/location", json={"lat": lat, "lng": lng})
        return GeoPoint.model_validate(response.json()["location"])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _assign(
        self, path: str, body: Dict[str, Any], *, owner_id: str, record_ids: Sequence[str]
    ) -> AssignmentResult:
        try:
            response = self._request("POST", path, json=body)
        except NpaTrackError as exc:
            raise AssignmentError(
                exc.message,
                owner_id=owner_id,
                created_ids=record_ids,
                status_code=exc.status_code,
                kind=exc.kind,
            ) from exc
        return AssignmentResult.model_validate(response.json())

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {API_KEY_HEADER: self._api_key}
        try:
            response = self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            LOGGER.warning("%s %s failed: %s", method, path, exc)
            raise NpaTrackError(f"API request failed: {exc}") from exc
        if response.status_code >= 400:
            envelope = _envelope(response)
            message = str(envelope.get("message") or response.reason_phrase)
            error = error_for_kind(envelope.get("kind"), message)
            error.status_code = response.status_code
            raise error
        return response


__all__ = ["API_KEY_HEADER", "RecoveryApiClient"]
