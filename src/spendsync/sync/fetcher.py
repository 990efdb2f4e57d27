from __future__ import annotations

from dataclasses import dataclass, field
import threading

import loguru
from loguru import logger

from spendsync.adapters.clients.plaid import (
    MUTATION_DURING_PAGINATION,
    AggregatorClient,
    PlaidClientError,
)
from spendsync.errors import ProviderError, SyncCancelledError
from spendsync.models.transaction import TransactionPayload


@dataclass
class ChangeSet:
    """Accumulated changes from every page of one cursor epoch."""

    added: list[TransactionPayload] = field(default_factory=list)
    modified: list[TransactionPayload] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # external ids
    next_cursor: str | None = None
    pages_fetched: int = 0

    @property
    def upserts(self) -> list[TransactionPayload]:
        return self.added + self.modified

    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)


class PageFetcherLogger:
    """Handles all logging for PageFetcher with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def fetch_start(self, cursor: str | None, page_num: int) -> None:
        """Log start of a page fetch."""
        cursor_label = cursor or "initial"
        self._logger.bind(cursor=cursor_label, page=page_num).debug(
            "Fetching page {} from aggregator (cursor: {})", page_num, cursor_label
        )

    def fetch_complete(
        self, added_count: int, modified_count: int, removed_count: int, page_num: int
    ) -> None:
        """Log completion of page fetch."""
        self._logger.bind(
            added=added_count,
            modified=modified_count,
            removed=removed_count,
            page=page_num,
        ).info(
            "Fetched page {}: {} added, {} modified, {} removed",
            page_num,
            added_count,
            modified_count,
            removed_count,
        )

    def fetch_summary(self, change_set: ChangeSet) -> None:
        """Log summary of all fetched pages."""
        self._logger.bind(
            total_added=len(change_set.added),
            total_modified=len(change_set.modified),
            total_removed=len(change_set.removed),
            pages=change_set.pages_fetched,
        ).info(
            "Total fetched: {} added, {} modified, {} removed across {} pages",
            len(change_set.added),
            len(change_set.modified),
            len(change_set.removed),
            change_set.pages_fetched,
        )

    def mutation_retry(self, attempt: int, max_retries: int) -> None:
        """Log mutation-during-pagination restart."""
        self._logger.bind(attempt=attempt, max_retries=max_retries).warning(
            "Mutation detected, restarting fetch (attempt {}/{})",
            attempt,
            max_retries,
        )

    def fetch_failed(self, page_num: int, error: ProviderError) -> None:
        self._logger.bind(page=page_num, error_code=error.error_code).error(
            "Aggregator page {} failed: {}", page_num, error.message
        )

    def cursor_stalled(self, page_num: int, cursor: str | None) -> None:
        self._logger.bind(page=page_num, cursor=cursor).error(
            "Page {} has more data but the cursor did not advance", page_num
        )

    def cancelled(self, page_num: int) -> None:
        self._logger.bind(page=page_num).warning(
            "Sync cancelled before fetching page {}", page_num
        )


class PageFetcher:
    """
    Drains the aggregator's cursor-based change feed for one sync attempt.

    The fetcher never persists a cursor. It returns the cursor reached after
    the last page, or raises without exposing any intermediate cursor.
    """

    def __init__(
        self,
        client: AggregatorClient,
        *,
        page_size: int = 500,
        max_mutation_retries: int = 3,
    ) -> None:
        """
        Initialize the page fetcher.

        Args:
            client: Aggregator client exposing ``sync_transactions``
            page_size: Maximum transactions per page (1-500)
            max_mutation_retries: Restarts allowed when the provider reports
                that data changed mid-pagination
        """
        self._client = client
        self._page_size = page_size
        self._max_mutation_retries = max_mutation_retries
        self._logger = PageFetcherLogger()

    def drain(
        self,
        access_token: str,
        cursor: str | None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ChangeSet:
        """
        Fetch every available page starting at ``cursor``.

        Args:
            access_token: Aggregator access credential
            cursor: Starting cursor; None for a first sync
            cancel_event: Checked before each page request

        Returns:
            ChangeSet holding the union of all pages and the final cursor

        Raises:
            ProviderError: If any page request fails, mutation retries are
                exhausted, or a page claims more data without a new cursor
            SyncCancelledError: If cancel_event is set between pages
        """
        retry_count = 0

        while True:
            try:
                return self._drain_once(access_token, cursor, cancel_event)
            except PlaidClientError as e:
                if e.error_code != MUTATION_DURING_PAGINATION:
                    raise
                if retry_count >= self._max_mutation_retries:
                    raise PlaidClientError(
                        f"Failed to sync after {self._max_mutation_retries} retries "
                        f"due to {MUTATION_DURING_PAGINATION}",
                        error_code=MUTATION_DURING_PAGINATION,
                    ) from e
                retry_count += 1
                self._logger.mutation_retry(retry_count, self._max_mutation_retries)

    def _drain_once(
        self,
        access_token: str,
        start_cursor: str | None,
        cancel_event: threading.Event | None,
    ) -> ChangeSet:
        change_set = ChangeSet()
        current_cursor = start_cursor

        while True:
            page_num = change_set.pages_fetched + 1
            if cancel_event is not None and cancel_event.is_set():
                self._logger.cancelled(page_num)
                raise SyncCancelledError(
                    f"Sync cancelled before page {page_num}; no changes applied"
                )

            self._logger.fetch_start(current_cursor, page_num)
            try:
                page = self._client.sync_transactions(
                    access_token,
                    cursor=current_cursor,
                    count=self._page_size,
                )
            except ProviderError as e:
                self._logger.fetch_failed(page_num, e)
                raise

            added: list[TransactionPayload] = page.get("added", [])
            modified: list[TransactionPayload] = page.get("modified", [])
            removed_ids = [
                item["transaction_id"]
                for item in page.get("removed", [])
                if item.get("transaction_id")
            ]

            change_set.added.extend(added)
            change_set.modified.extend(modified)
            change_set.removed.extend(removed_ids)
            change_set.pages_fetched = page_num

            self._logger.fetch_complete(
                len(added), len(modified), len(removed_ids), page_num
            )

            next_cursor = page.get("next_cursor") or current_cursor
            has_more = page.get("has_more", False)
            if has_more and next_cursor == current_cursor:
                self._logger.cursor_stalled(page_num, current_cursor)
                raise ProviderError(
                    f"Aggregator reported more pages after page {page_num} "
                    "without advancing the cursor"
                )

            current_cursor = next_cursor
            if not has_more:
                change_set.next_cursor = current_cursor
                self._logger.fetch_summary(change_set)
                return change_set
