"""In-process ledger used for local development and tests.

Behaves like the contract for the cases the services care about: duplicate
hashes are rejected, batches are all-or-nothing, revoked records stop
verifying. Failures can be injected per operation, and every call is recorded
in `calls`.
"""

from __future__ import annotations

import hashlib
from dataclasses import replace
from typing import Sequence

from .gateway import (
    LEDGER_STATUS_ACTIVE,
    LEDGER_STATUS_REVOKED,
    LedgerError,
    LedgerErrorKind,
    LedgerGateway,
    LedgerRecord,
    LedgerStatistics,
    QueryResult,
    RevokeReceipt,
    RevokeResult,
    SubmitReceipt,
    SubmitResult,
)


class InMemoryLedgerGateway(LedgerGateway):
    def __init__(self, *, available: bool = True, chain_id: int = 31337, first_block: int = 1):
        self.available = available
        self.chain_id = chain_id
        self.contract_address = "0x" + "0" * 39 + "1"
        self.records: dict[str, LedgerRecord] = {}
        self.calls: list[tuple[str, tuple]] = []
        self._next_block = first_block
        self._failures: dict[str, LedgerError] = {}
        self._receipts: dict[str, SubmitReceipt] = {}

    # Test helpers

    def fail_next(self, op: str, kind: LedgerErrorKind = LedgerErrorKind.REVERTED, reason: str = "execution reverted"):
        """Makes the next call to `op` ("submit", "submit_batch", "revoke", "query") fail."""

        self._failures[op] = LedgerError(kind, reason)

    def respond_next(self, op: str, receipt: SubmitReceipt) -> None:
        """Makes the next successful `op` return this receipt instead of a generated one."""

        self._receipts[op] = receipt

    def calls_to(self, op: str) -> list[tuple]:
        return [args for name, args in self.calls if name == op]

    # Internals

    def _take_failure(self, op: str) -> LedgerError | None:
        return self._failures.pop(op, None)

    def _receipt(self, op: str, payload: str) -> SubmitReceipt:
        forced = self._receipts.pop(op, None)
        if forced is not None:
            return forced
        block = self._next_block
        self._next_block += 1
        tx_hash = "0x" + hashlib.sha256(f"{op}:{block}:{payload}".encode("utf-8")).hexdigest()
        return SubmitReceipt(tx_hash=tx_hash, block_number=block)

    def _unavailable(self) -> LedgerError:
        return LedgerError(LedgerErrorKind.UNAVAILABLE, "In-memory ledger switched off")

    # LedgerGateway

    def is_available(self) -> bool:
        return self.available

    def submit(
        self,
        *,
        cert_hash: str,
        student_address: str,
        student_id: str,
        university_code: str,
        company_code: str,
        start_unix: int,
        end_unix: int,
    ) -> SubmitResult:
        self.calls.append(("submit", (cert_hash,)))
        if not self.available:
            return self._unavailable()
        failure = self._take_failure("submit")
        if failure is not None:
            return failure
        if cert_hash in self.records:
            return LedgerError(LedgerErrorKind.DUPLICATE, "Certificate already exists")

        receipt = self._receipt("submit", cert_hash)
        self.records[cert_hash] = LedgerRecord(
            cert_hash=cert_hash,
            issuer=self.contract_address,
            student=student_address or "",
            student_id=student_id,
            university_code=university_code,
            company_code=company_code,
            issue_date=int(start_unix),
            start_date=int(start_unix),
            end_date=int(end_unix),
            status=LEDGER_STATUS_ACTIVE,
        )
        return receipt

    def submit_batch(
        self,
        *,
        cert_hashes: Sequence[str],
        student_addresses: Sequence[str],
        student_ids: Sequence[str],
        university_code: str,
        company_code: str,
        start_unixes: Sequence[int],
        end_unixes: Sequence[int],
    ) -> SubmitResult:
        self.calls.append(("submit_batch", tuple(cert_hashes)))
        if not self.available:
            return self._unavailable()
        failure = self._take_failure("submit_batch")
        if failure is not None:
            return failure
        if len(set(cert_hashes)) != len(cert_hashes) or any(h in self.records for h in cert_hashes):
            # One transaction: a single duplicate reverts the whole batch.
            return LedgerError(LedgerErrorKind.DUPLICATE, "Certificate already exists")

        receipt = self._receipt("submit_batch", ",".join(cert_hashes))
        for i, cert_hash in enumerate(cert_hashes):
            self.records[cert_hash] = LedgerRecord(
                cert_hash=cert_hash,
                issuer=self.contract_address,
                student=student_addresses[i] if i < len(student_addresses) else "",
                student_id=student_ids[i],
                university_code=university_code,
                company_code=company_code,
                issue_date=int(start_unixes[i]),
                start_date=int(start_unixes[i]),
                end_date=int(end_unixes[i]),
                status=LEDGER_STATUS_ACTIVE,
            )
        return receipt

    def query(self, cert_hash: str) -> QueryResult | LedgerError:
        self.calls.append(("query", (cert_hash,)))
        if not self.available:
            return self._unavailable()
        failure = self._take_failure("query")
        if failure is not None:
            return failure
        record = self.records.get(cert_hash)
        if record is None:
            return QueryResult(exists=False, valid=False, record=None)
        return QueryResult(exists=True, valid=record.is_active, record=record)

    def revoke(self, *, cert_hash: str, reason: str) -> RevokeResult:
        self.calls.append(("revoke", (cert_hash, reason)))
        if not self.available:
            return self._unavailable()
        failure = self._take_failure("revoke")
        if failure is not None:
            return failure
        record = self.records.get(cert_hash)
        if record is None:
            return LedgerError(LedgerErrorKind.REVERTED, "Certificate does not exist")
        if record.is_revoked:
            return LedgerError(LedgerErrorKind.REVERTED, "Certificate already revoked")

        self.records[cert_hash] = replace(record, status=LEDGER_STATUS_REVOKED)
        return RevokeReceipt(tx_hash=self._receipt("revoke", cert_hash).tx_hash)

    def statistics(self) -> LedgerStatistics | LedgerError:
        if not self.available:
            return self._unavailable()
        active = sum(1 for r in self.records.values() if r.is_active)
        revoked = sum(1 for r in self.records.values() if r.is_revoked)
        return LedgerStatistics(total=len(self.records), active=active, revoked=revoked)
