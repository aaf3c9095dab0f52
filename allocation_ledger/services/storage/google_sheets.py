"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Users can view their banks, goals and history directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the ledger's write intents cover this)
- No conditional writes: a versioned update re-reads the row right before
  writing, which narrows but does not close the race window
- Limited query capabilities (we filter in Python)

Each collection is one worksheet. The header row is the model's field
names; nested fields (intent steps, audit details) are JSON-encoded.
"""

import json
from typing import Any, Optional, Sequence

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from allocation_ledger.config import get_settings
from allocation_ledger.services.storage.filters import (
    apply_patch,
    matches,
    paginate,
    require_filters,
    sort_records,
)
from allocation_ledger.services.storage.interface import (
    COLLECTION_MODELS,
    Collection,
    ConnectionError,
    DuplicateError,
    Filters,
    PersistenceGateway,
    StorageError,
    primary_key,
)


logger = structlog.get_logger(__name__)

# Fields stored as JSON text in a single cell
JSON_FIELDS: dict[Collection, set[str]] = {
    Collection.WRITE_INTENTS: {"steps"},
    Collection.AUDIT_LOG: {"details"},
}

sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    reraise=True,
)


def columns_for(collection: Collection) -> list[str]:
    """Header row of a collection's worksheet."""
    return list(COLLECTION_MODELS[collection].model_fields)


def _to_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def record_to_row(collection: Collection, record: BaseModel) -> list[str]:
    """Convert a record to a spreadsheet row."""
    data = record.model_dump(mode="json")
    return [_to_cell(data.get(column)) for column in columns_for(collection)]


def row_to_record(collection: Collection, row: list[str]) -> BaseModel:
    """Convert a spreadsheet row to a record. Empty cells fall back to defaults."""
    json_fields = JSON_FIELDS.get(collection, set())
    data = {}
    for index, column in enumerate(columns_for(collection)):
        value = row[index] if index < len(row) else ""
        if value == "":
            continue
        data[column] = json.loads(value) if column in json_fields else value
    return COLLECTION_MODELS[collection].model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[Collection, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def sheet_name(self, collection: Collection) -> str:
        return {
            Collection.BANKS: self._settings.banks_sheet_name,
            Collection.GOALS: self._settings.goals_sheet_name,
            Collection.ALLOCATIONS: self._settings.allocations_sheet_name,
            Collection.TRANSACTIONS: self._settings.transactions_sheet_name,
            Collection.WRITE_INTENTS: self._settings.intents_sheet_name,
            Collection.AUDIT_LOG: self._settings.audit_sheet_name,
        }[collection]

    def get_worksheet(self, collection: Collection) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        if collection in self._worksheets:
            return self._worksheets[collection]

        spreadsheet = self.get_spreadsheet()
        columns = columns_for(collection)
        try:
            sheet = spreadsheet.worksheet(self.sheet_name(collection))
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=self.sheet_name(collection),
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)

        self._worksheets[collection] = sheet
        return sheet


class GoogleSheetsGateway(PersistenceGateway):
    """
    Google Sheets implementation of the persistence gateway.

    Every call reads the whole worksheet and filters in Python.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @sheets_retry
    def _read_rows(self, collection: Collection) -> list[tuple[int, BaseModel]]:
        """All parseable records with their 1-based sheet row numbers."""
        sheet = self._client.get_worksheet(collection)
        rows = []
        # Start from 2 (row 1 is header)
        for index, row in enumerate(sheet.get_all_values()[1:], start=2):
            if not row or not row[0]:
                continue
            try:
                rows.append((index, row_to_record(collection, row)))
            except Exception as e:
                logger.warning(
                    "sheets_row_skipped",
                    collection=collection.value,
                    row=index,
                    error=str(e),
                )
        return rows

    @sheets_retry
    def _append(self, collection: Collection, record: BaseModel) -> None:
        sheet = self._client.get_worksheet(collection)
        sheet.append_row(record_to_row(collection, record), value_input_option="RAW")

    @sheets_retry
    def _overwrite(self, collection: Collection, index: int, record: BaseModel) -> None:
        sheet = self._client.get_worksheet(collection)
        sheet.update(
            range_name=f"A{index}",
            values=[record_to_row(collection, record)],
            value_input_option="RAW",
        )

    @sheets_retry
    def _remove(self, collection: Collection, index: int) -> None:
        self._client.get_worksheet(collection).delete_rows(index)

    async def get(
        self,
        collection: Collection,
        filters: Optional[Filters] = None,
        *,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BaseModel]:
        """Read records from a worksheet."""
        try:
            records = [
                record for _, record in self._read_rows(collection)
                if matches(record, filters)
            ]
            return paginate(sort_records(records, order_by), limit, offset)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {collection.value}: {e}")

    async def count(
        self,
        collection: Collection,
        filters: Optional[Filters] = None,
    ) -> int:
        return len(await self.get(collection, filters))

    async def insert(
        self,
        collection: Collection,
        record: BaseModel,
    ) -> BaseModel:
        """Append a record as a new row."""
        try:
            existing = [r for _, r in self._read_rows(collection)]
            key = primary_key(collection)
            record_id = str(getattr(record, key))
            if any(str(getattr(r, key)) == record_id for r in existing):
                raise DuplicateError(f"{collection.value} record already exists: {record_id}")

            stored = record.model_copy(deep=True)
            if "seq" in type(stored).model_fields and stored.seq is None:
                stored.seq = max((r.seq or 0 for r in existing), default=0) + 1

            self._append(collection, stored)
            return stored
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {collection.value}: {e}")

    async def update(
        self,
        collection: Collection,
        filters: Filters,
        patch: dict[str, Any],
    ) -> int:
        """Rewrite every matching row."""
        require_filters(filters, "update")
        try:
            targets = [
                (index, apply_patch(record, patch))
                for index, record in self._read_rows(collection)
                if matches(record, filters)
            ]
            for index, record in targets:
                self._overwrite(collection, index, record)
            return len(targets)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {collection.value}: {e}")

    async def delete(
        self,
        collection: Collection,
        filters: Filters,
    ) -> int:
        """Delete every matching row."""
        require_filters(filters, "delete")
        try:
            indices = [
                index for index, record in self._read_rows(collection)
                if matches(record, filters)
            ]
            # Bottom-up so earlier row numbers stay valid
            for index in sorted(indices, reverse=True):
                self._remove(collection, index)
            return len(indices)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {collection.value}: {e}")
