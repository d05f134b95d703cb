"""
Upsert relay: turns a widget save request into one authenticated bulk
rowset upsert against the target Data Extension.

One save runs Validating -> Authenticating -> BuildingPayload -> Submitting
and either returns a SaveResult or raises one RelayError subclass. There is
no retry loop here; a caller-level retry of the whole save is safe because
rows are upserted by their (emailName, fieldName) key.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

import httpx

from de_relay.config import RelaySettings
from de_relay.errors import ConfigError, UpsertError, ValidationError
from de_relay.models.save import FieldEntry, Row, RowsetItem, SaveRequest, SaveResult
from de_relay.services.token_cache import TokenCache

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_entry_timestamp(moment: datetime) -> str:
    """
    Format a datetime as UTC ISO-8601 with millisecond precision and a Z
    suffix, e.g. ``2026-01-01T12:00:00.000Z``.
    """
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_save_request(
    request: SaveRequest,
    max_fields: int,
) -> Tuple[str, List[FieldEntry]]:
    """
    Check a save request and return its cleaned email name and fields.

    Surrounding whitespace is stripped before checking, so a whitespace-only
    name or value counts as empty. Field order is preserved.

    Raises:
        ValidationError: with ``rule`` set to the first rule violated.
    """
    email_name = (request.emailName or "").strip()
    if not email_name:
        raise ValidationError("Email Name is required.", rule="email_name_required")

    if not request.fields:
        raise ValidationError(
            "At least one field is required.", rule="fields_required"
        )

    if len(request.fields) > max_fields:
        raise ValidationError(
            f"Maximum {max_fields} fields allowed.",
            rule="too_many_fields",
            max_fields=max_fields,
            field_count=len(request.fields),
        )

    cleaned: List[FieldEntry] = []
    seen: set = set()
    for index, entry in enumerate(request.fields):
        name = (entry.name or "").strip()
        value = (entry.value or "").strip()

        if not name:
            raise ValidationError(
                "All fields must have both a name and a value.",
                rule="field_name_required",
                index=index,
            )
        if not value:
            raise ValidationError(
                "All fields must have both a name and a value.",
                rule="field_value_required",
                index=index,
                field=name,
            )

        folded = name.casefold()
        if folded in seen:
            raise ValidationError(
                f'Duplicate field name: "{name}". Each field name must be unique.',
                rule="duplicate_field_name",
                index=index,
                field=name,
            )
        seen.add(folded)
        cleaned.append(FieldEntry(name=name, value=value))

    return email_name, cleaned


# ---------------------------------------------------------------------------
# Row expansion and payload
# ---------------------------------------------------------------------------

def build_rows(email_name: str, fields: List[FieldEntry], timestamp: str) -> List[Row]:
    """Expand fields into one Row each, all sharing ``timestamp``."""
    return [
        Row(
            emailName=email_name,
            fieldName=entry.name,
            fieldValue=entry.value,
            entryTimestamp=timestamp,
        )
        for entry in fields
    ]


def build_rowset_payload(rows: List[Row]) -> List[dict]:
    """
    Convert rows to the rowset upsert body:
    ``[{"keys": {emailName, fieldName}, "values": {...all four columns}}]``.
    """
    return [RowsetItem.from_row(row).model_dump() for row in rows]


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

class UpsertRelay:
    """
    Saves widget field batches into the configured Data Extension.

    Shares one TokenCache and one httpx.AsyncClient for the life of the
    process.
    """

    def __init__(
        self,
        settings: RelaySettings,
        token_cache: TokenCache,
        http_client: httpx.AsyncClient,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._token_cache = token_cache
        self._http = http_client
        self._now = now

    @property
    def settings(self) -> RelaySettings:
        return self._settings

    async def save(self, request: SaveRequest) -> SaveResult:
        """
        Validate, authenticate and upsert one save request as a single batch.

        Args:
            request: The widget's save request.

        Returns:
            SaveResult with the number of rows submitted and the platform's
            response body.

        Raises:
            ConfigError: required configuration is missing (no network call).
            ValidationError: the request breaks a validation rule (no network
                call).
            AuthError: the token exchange failed.
            UpsertError: the rowset upsert failed.
        """
        missing = self._settings.missing_required()
        if missing:
            raise ConfigError(missing)

        email_name, fields = validate_save_request(request, self._settings.max_fields)

        # One timestamp per save so every row of a save can be grouped later
        timestamp = format_entry_timestamp(self._now())
        rows = build_rows(email_name, fields, timestamp)

        token = await self._token_cache.get_token()

        payload = build_rowset_payload(rows)
        result = await self._submit(token, payload)

        logger.info(
            "Saved %d row(s) for email %r to DE %s",
            len(rows), email_name, self._settings.de_external_key,
        )
        return SaveResult(rows_inserted=len(rows), timestamp=timestamp, result=result)

    async def _submit(self, token: str, payload: List[dict]) -> Optional[Any]:
        """POST the whole batch to the rowset endpoint in one request."""
        url = self._settings.rowset_url
        logger.info(
            "Inserting %d rows into DE %s", len(payload), self._settings.de_external_key
        )

        try:
            response = await self._http.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._settings.request_timeout,
            )
        except httpx.HTTPError as exc:
            logger.error(f"DE upsert request failed: {exc!r}")
            raise UpsertError(f"DE Insert failed: {exc}") from exc

        if not response.is_success:
            logger.error("DE Insert failed with HTTP %s", response.status_code)
            if response.status_code == 401:
                # Token was rejected; make the next save fetch a fresh one
                self._token_cache.invalidate()
            raise UpsertError(
                f"DE Insert failed: {response.status_code} - {response.text}",
                status=response.status_code,
                body=response.text,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
