"""Per-context pixel collection with aggregate health counters."""

from __future__ import annotations

from pydantic import BaseModel, Field

from pixeltrack.pixels.record import ERROR_SENTINEL, PixelRecord

MISSING_PIXEL_LABEL = "Missing"


class ClassificationPolicy(BaseModel):
    """How records feed the collection's error and warning counters.

    By default only the checks made when a record is created count towards
    ``error_count``. With ``count_transport_errors`` a failed request counts
    as an error as well.
    """

    count_transport_errors: bool = False

    def is_error(self, record: PixelRecord) -> bool:
        if not record.checks.required_ok:
            return True
        return self.count_transport_errors and record.error_flag

    def is_warning(self, record: PixelRecord) -> bool:
        return record.is_script and not record.checks.optional_ok


class PixelGroup(BaseModel):
    """Records that share a pixel id."""

    pixel_id: str
    records: list[PixelRecord]


class PixelCollection(BaseModel):
    """All pixel records seen in one browsing context, in arrival order.

    Contract:
    - Counters always describe the current ``records``
    - ``duplicate_count`` starts at 1 and grows by at most 1 per insertion
    - Records are only mutated through ``mark_answered`` / ``mark_failed``
    """

    context_id: int
    records: list[PixelRecord] = Field(default_factory=list)
    error_count: int = 0
    warning_count: int = 0
    duplicate_count: int = 1
    policy: ClassificationPolicy = Field(default_factory=ClassificationPolicy, exclude=True)

    @property
    def is_empty(self) -> bool:
        return not self.records

    def __len__(self) -> int:
        return len(self.records)

    # --- Insertion ---

    def add(self, record: PixelRecord) -> None:
        """Append a record and fold it into the counters."""
        if self._has_same_checks(record, self.records):
            self.duplicate_count += 1
        self.records.append(record)

        if self.policy.is_error(record):
            self.error_count += 1
        if self.policy.is_warning(record):
            self.warning_count += 1

    @staticmethod
    def _has_same_checks(record: PixelRecord, earlier: list[PixelRecord]) -> bool:
        return any(other.checks == record.checks for other in earlier)

    # --- Updates keyed by request id ---

    def find(self, request_id: str) -> PixelRecord | None:
        for record in self.records:
            if record.request_id == request_id:
                return record
        return None

    def mark_answered(self, request_id: str, answered_at: float) -> PixelRecord | None:
        """Record the latency of a completed (or redirected) request.

        Re-delivery overwrites the previous latency. A request that already
        failed keeps its error timing.
        """
        record = self.find(request_id)
        if record is None or record.timing_failed:
            return record
        record.elapsed_ms = round(answered_at - record.created_at, 2)
        return record

    def mark_failed(self, request_id: str, non_fatal: bool = False) -> PixelRecord | None:
        """Flag a transport failure; fatal failures also replace the timing."""
        record = self.find(request_id)
        if record is None:
            return None
        record.error_flag = True
        if not non_fatal:
            record.elapsed_ms = ERROR_SENTINEL
        if self.policy.count_transport_errors:
            self.recount()
        return record

    # --- Eviction ---

    def prune(self, now_ms: float, damper_ms: float) -> int:
        """Drop records at least ``damper_ms`` old. Returns how many were removed.

        A page can finish loading after some of its pixels were already sent,
        so only records older than the damper are eligible.
        """
        survivors = [r for r in self.records if r.created_at + damper_ms > now_ms]
        removed = len(self.records) - len(survivors)
        if removed:
            self.records = survivors
            self.recount()
        return removed

    def recount(self) -> None:
        """Rebuild all counters from the current records."""
        self.error_count = 0
        self.warning_count = 0
        self.duplicate_count = 1
        for index, record in enumerate(self.records):
            if self._has_same_checks(record, self.records[:index]):
                self.duplicate_count += 1
            if self.policy.is_error(record):
                self.error_count += 1
            if self.policy.is_warning(record):
                self.warning_count += 1

    # --- Read side ---

    def groups(self) -> list[PixelGroup]:
        """Group records by pixel id, in order of first appearance."""
        grouped: dict[str, list[PixelRecord]] = {}
        for record in self.records:
            label = record.pixel_id or MISSING_PIXEL_LABEL
            grouped.setdefault(label, []).append(record)
        return [PixelGroup(pixel_id=label, records=records) for label, records in grouped.items()]

    def snapshot(self) -> PixelCollection:
        """Deep copy for readers; later mutations are not visible through it."""
        return self.model_copy(deep=True)
