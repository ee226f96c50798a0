"""Narrow interface to the certificate contract on the ledger.

Every operation returns either a result dataclass or a `LedgerError`; callers
branch on the returned value instead of catching exceptions. A gateway is built
explicitly (see `build_ledger_gateway`) and handed to the services that need it.

Initialization contract for `Web3LedgerGateway`: load configuration, bind the
contract from its JSON artifact (address, abi, chainId), then report
`is_available()`. Mutating operations check availability first and return an
`UNAVAILABLE` error instead of attempting a call that would fail slowly.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

from django.conf import settings
from django.utils.module_loading import import_string
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception


logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Contract-side certificate status.
LEDGER_STATUS_NONE = 0
LEDGER_STATUS_ACTIVE = 1
LEDGER_STATUS_REVOKED = 2


class LedgerErrorKind(str, enum.Enum):
    UNAVAILABLE = "UNAVAILABLE"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    REVERTED = "REVERTED"
    DUPLICATE = "DUPLICATE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class LedgerError:
    kind: LedgerErrorKind
    reason: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.reason}"


@dataclass(frozen=True)
class SubmitReceipt:
    tx_hash: str
    block_number: int


@dataclass(frozen=True)
class RevokeReceipt:
    tx_hash: str


@dataclass(frozen=True)
class LedgerRecord:
    cert_hash: str
    issuer: str
    student: str
    student_id: str
    university_code: str
    company_code: str
    issue_date: int
    start_date: int
    end_date: int
    status: int

    @property
    def is_active(self) -> bool:
        return self.status == LEDGER_STATUS_ACTIVE

    @property
    def is_revoked(self) -> bool:
        return self.status == LEDGER_STATUS_REVOKED


@dataclass(frozen=True)
class QueryResult:
    exists: bool
    valid: bool
    record: LedgerRecord | None = None


@dataclass(frozen=True)
class LedgerStatistics:
    total: int
    active: int
    revoked: int


SubmitResult = Union[SubmitReceipt, LedgerError]
RevokeResult = Union[RevokeReceipt, LedgerError]


class LedgerGateway:
    """Operations every ledger backend provides."""

    chain_id: int = 31337
    contract_address: str | None = None

    def is_available(self) -> bool:
        raise NotImplementedError

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
        raise NotImplementedError

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
        raise NotImplementedError

    def query(self, cert_hash: str) -> QueryResult | LedgerError:
        raise NotImplementedError

    def revoke(self, *, cert_hash: str, reason: str) -> RevokeResult:
        raise NotImplementedError

    def statistics(self) -> LedgerStatistics | LedgerError:
        raise NotImplementedError


def classify_ledger_exception(exc: Exception) -> LedgerError:
    if isinstance(exc, TimeExhausted):
        return LedgerError(LedgerErrorKind.TIMEOUT, str(exc) or "Timed out waiting for the transaction receipt")
    if isinstance(exc, ContractLogicError):
        message = str(getattr(exc, "message", "") or exc)
        if "already exists" in message.lower():
            return LedgerError(LedgerErrorKind.DUPLICATE, message)
        return LedgerError(LedgerErrorKind.REVERTED, message)
    if isinstance(exc, OSError):
        # requests' connection and read-timeout errors derive from OSError.
        return LedgerError(LedgerErrorKind.NETWORK, str(exc) or exc.__class__.__name__)
    if isinstance(exc, Web3Exception):
        return LedgerError(LedgerErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__)
    return LedgerError(LedgerErrorKind.UNKNOWN, f"{exc.__class__.__name__}: {exc}")


class _TransactionReverted(Exception):
    pass


class Web3LedgerGateway(LedgerGateway):
    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        private_key: str | None = None,
        contract_path: str | None = None,
        timeout_seconds: int | None = None,
        gas_limit: int | None = None,
        web3: Web3 | None = None,
    ):
        self.rpc_url = rpc_url or settings.LEDGER_RPC_URL
        self.private_key = private_key if private_key is not None else settings.LEDGER_SIGNER_PRIVATE_KEY
        self.contract_path = Path(contract_path or settings.LEDGER_CONTRACT_PATH)
        self.timeout_seconds = int(timeout_seconds or settings.LEDGER_TX_TIMEOUT_SECONDS)
        self.gas_limit = int(gas_limit or settings.LEDGER_GAS_LIMIT)
        self.chain_id = int(settings.LEDGER_CHAIN_ID)

        self.web3 = web3 or Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.timeout_seconds}))
        self.contract = None
        self.contract_address = None
        self.account = None

        self._load_contract()

    def _load_contract(self) -> None:
        if not self.contract_path.exists():
            logger.warning("ledger.contract_missing", extra={"path": str(self.contract_path)})
            return

        try:
            config = json.loads(self.contract_path.read_text(encoding="utf-8"))
            address = Web3.to_checksum_address(config["address"])
            self.contract = self.web3.eth.contract(address=address, abi=config["abi"])
            self.contract_address = address
            if config.get("chainId"):
                self.chain_id = int(config["chainId"])
        except (OSError, ValueError, KeyError, TypeError):
            logger.exception("ledger.contract_load_failed", extra={"path": str(self.contract_path)})
            self.contract = None
            return

        key = str(self.private_key or "").strip()
        if not key:
            logger.warning("ledger.signer_missing")
            return
        if not key.startswith("0x"):
            key = "0x" + key
        self.account = self.web3.eth.account.from_key(key)
        logger.info("ledger.contract_loaded", extra={"address": address, "chain_id": self.chain_id})

    def is_available(self) -> bool:
        if self.contract is None or self.account is None:
            return False
        try:
            return bool(self.web3.is_connected())
        except Exception:  # noqa: BLE001
            logger.warning("ledger.liveness_check_failed", exc_info=True)
            return False

    def _unavailable(self) -> LedgerError:
        return LedgerError(LedgerErrorKind.UNAVAILABLE, "Ledger contract is not loaded or the node is unreachable")

    def _transact(self, fn) -> SubmitReceipt:
        sender = self.account.address
        tx = fn.build_transaction(
            {
                "from": sender,
                "nonce": self.web3.eth.get_transaction_count(sender, "pending"),
                "gas": self.gas_limit,
                "chainId": self.chain_id,
            }
        )
        signed = self.web3.eth.account.sign_transaction(tx, self.account.key)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout_seconds)
        if receipt["status"] != 1:
            raise _TransactionReverted(f"Transaction {Web3.to_hex(tx_hash)} reverted")
        return SubmitReceipt(tx_hash=Web3.to_hex(receipt["transactionHash"]), block_number=int(receipt["blockNumber"]))

    def _failure(self, exc: Exception, *, op: str) -> LedgerError:
        if isinstance(exc, _TransactionReverted):
            error = LedgerError(LedgerErrorKind.REVERTED, str(exc))
        else:
            error = classify_ledger_exception(exc)
        logger.warning("ledger.%s_failed", op, extra={"kind": error.kind.value, "reason": error.reason})
        return error

    @staticmethod
    def _address(value: str) -> str:
        value = str(value or "").strip()
        if not value:
            return ZERO_ADDRESS
        return Web3.to_checksum_address(value)

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
        if not self.is_available():
            return self._unavailable()
        try:
            fn = self.contract.functions.createCertificate(
                Web3.to_bytes(hexstr=cert_hash),
                self._address(student_address),
                student_id,
                university_code,
                company_code,
                int(start_unix),
                int(end_unix),
                "",
            )
            return self._transact(fn)
        except Exception as exc:  # noqa: BLE001
            return self._failure(exc, op="submit")

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
        if not self.is_available():
            return self._unavailable()
        try:
            fn = self.contract.functions.batchCreateCertificates(
                [Web3.to_bytes(hexstr=h) for h in cert_hashes],
                [self._address(a) for a in student_addresses],
                list(student_ids),
                university_code,
                company_code,
                [int(s) for s in start_unixes],
                [int(e) for e in end_unixes],
            )
            return self._transact(fn)
        except Exception as exc:  # noqa: BLE001
            return self._failure(exc, op="submit_batch")

    def query(self, cert_hash: str) -> QueryResult | LedgerError:
        if self.contract is None:
            return self._unavailable()
        try:
            is_valid, cert = self.contract.functions.verifyCertificate(Web3.to_bytes(hexstr=cert_hash)).call()
        except Exception as exc:  # noqa: BLE001
            return self._failure(exc, op="query")

        record = LedgerRecord(
            cert_hash=Web3.to_hex(cert[0]),
            issuer=cert[1],
            student=cert[2],
            student_id=cert[3],
            university_code=cert[4],
            company_code=cert[5],
            issue_date=int(cert[6]),
            start_date=int(cert[7]),
            end_date=int(cert[8]),
            status=int(cert[9]),
        )
        if record.status == LEDGER_STATUS_NONE:
            return QueryResult(exists=False, valid=False, record=None)
        return QueryResult(exists=True, valid=bool(is_valid), record=record)

    def revoke(self, *, cert_hash: str, reason: str) -> RevokeResult:
        if not self.is_available():
            return self._unavailable()
        try:
            receipt = self._transact(
                self.contract.functions.revokeCertificate(Web3.to_bytes(hexstr=cert_hash), reason)
            )
        except Exception as exc:  # noqa: BLE001
            return self._failure(exc, op="revoke")
        return RevokeReceipt(tx_hash=receipt.tx_hash)

    def statistics(self) -> LedgerStatistics | LedgerError:
        if self.contract is None:
            return self._unavailable()
        try:
            total, active, revoked = self.contract.functions.getStatistics().call()
        except Exception as exc:  # noqa: BLE001
            return self._failure(exc, op="statistics")
        return LedgerStatistics(total=int(total), active=int(active), revoked=int(revoked))


def build_ledger_gateway(dotted_path: str | None = None) -> LedgerGateway:
    """Constructs the gateway configured in `LEDGER_GATEWAY_CLASS`."""

    gateway_cls = import_string(dotted_path or settings.LEDGER_GATEWAY_CLASS)
    return gateway_cls()
