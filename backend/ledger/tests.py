from pathlib import Path
from unittest.mock import MagicMock

from django.test import SimpleTestCase, override_settings
from web3.exceptions import ContractLogicError, TimeExhausted

from .gateway import (
    LEDGER_STATUS_ACTIVE,
    LedgerError,
    LedgerErrorKind,
    QueryResult,
    SubmitReceipt,
    Web3LedgerGateway,
    build_ledger_gateway,
    classify_ledger_exception,
)
from .memory import InMemoryLedgerGateway


HASH_A = "0x" + "a" * 64
HASH_B = "0x" + "b" * 64
CONTRACT_PATH = Path(__file__).resolve().parent / "contracts" / "InternshipCertification.json"


def _submit(gateway, cert_hash=HASH_A):
    return gateway.submit(
        cert_hash=cert_hash,
        student_address="",
        student_id="S001",
        university_code="UNI01",
        company_code="COMP01",
        start_unix=1717200000,
        end_unix=1722470400,
    )


class ClassifyLedgerExceptionTests(SimpleTestCase):
    def test_kinds(self):
        cases = [
            (TimeExhausted("no receipt"), LedgerErrorKind.TIMEOUT),
            (ContractLogicError("execution reverted: Certificate already exists"), LedgerErrorKind.DUPLICATE),
            (ContractLogicError("execution reverted: Not authorized"), LedgerErrorKind.REVERTED),
            (ConnectionError("connection refused"), LedgerErrorKind.NETWORK),
            (ValueError("weird"), LedgerErrorKind.UNKNOWN),
        ]
        for exc, kind in cases:
            with self.subTest(exc=exc):
                self.assertEqual(classify_ledger_exception(exc).kind, kind)

    def test_error_string_carries_kind(self):
        self.assertEqual(str(LedgerError(LedgerErrorKind.TIMEOUT, "no receipt")), "TIMEOUT: no receipt")


class InMemoryLedgerGatewayTests(SimpleTestCase):
    def test_submit_then_query(self):
        gateway = InMemoryLedgerGateway()

        receipt = _submit(gateway)

        self.assertIsInstance(receipt, SubmitReceipt)
        result = gateway.query(HASH_A)
        self.assertTrue(result.exists)
        self.assertTrue(result.valid)
        self.assertEqual(result.record.status, LEDGER_STATUS_ACTIVE)
        self.assertEqual(result.record.start_date, 1717200000)

    def test_duplicate_is_rejected(self):
        gateway = InMemoryLedgerGateway()
        _submit(gateway)
        error = _submit(gateway)
        self.assertEqual(error.kind, LedgerErrorKind.DUPLICATE)

    def test_batch_is_all_or_nothing(self):
        gateway = InMemoryLedgerGateway()
        _submit(gateway, HASH_B)

        error = gateway.submit_batch(
            cert_hashes=[HASH_A, HASH_B],
            student_addresses=["", ""],
            student_ids=["S001", "S002"],
            university_code="UNI01",
            company_code="COMP01",
            start_unixes=[1, 1],
            end_unixes=[2, 2],
        )

        self.assertIsInstance(error, LedgerError)
        self.assertFalse(gateway.query(HASH_A).exists)

    def test_revoked_record_stops_verifying(self):
        gateway = InMemoryLedgerGateway()
        _submit(gateway)

        gateway.revoke(cert_hash=HASH_A, reason="misconduct")

        result = gateway.query(HASH_A)
        self.assertTrue(result.exists)
        self.assertFalse(result.valid)
        self.assertEqual(gateway.revoke(cert_hash=HASH_A, reason="again").kind, LedgerErrorKind.REVERTED)

    def test_injected_failure_applies_once(self):
        gateway = InMemoryLedgerGateway()
        gateway.fail_next("submit", LedgerErrorKind.NETWORK, "reset")

        self.assertEqual(_submit(gateway).kind, LedgerErrorKind.NETWORK)
        self.assertIsInstance(_submit(gateway), SubmitReceipt)
        self.assertEqual(len(gateway.calls_to("submit")), 2)

    def test_switched_off(self):
        gateway = InMemoryLedgerGateway(available=False)
        self.assertFalse(gateway.is_available())
        self.assertEqual(_submit(gateway).kind, LedgerErrorKind.UNAVAILABLE)
        self.assertEqual(gateway.statistics().kind, LedgerErrorKind.UNAVAILABLE)


class Web3LedgerGatewayTests(SimpleTestCase):
    def test_missing_contract_artifact_means_unavailable(self):
        gateway = Web3LedgerGateway(contract_path="/nonexistent/contract.json", web3=MagicMock())

        self.assertFalse(gateway.is_available())
        self.assertIsNone(gateway.contract_address)
        self.assertEqual(_submit(gateway).kind, LedgerErrorKind.UNAVAILABLE)
        self.assertEqual(gateway.query(HASH_A).kind, LedgerErrorKind.UNAVAILABLE)

    def test_missing_signer_means_unavailable(self):
        gateway = Web3LedgerGateway(contract_path=str(CONTRACT_PATH), private_key="", web3=MagicMock())

        self.assertIsNotNone(gateway.contract)
        self.assertEqual(gateway.chain_id, 31337)
        self.assertFalse(gateway.is_available())

    def test_query_maps_contract_tuple(self):
        web3 = MagicMock()
        gateway = Web3LedgerGateway(contract_path=str(CONTRACT_PATH), private_key="", web3=web3)
        gateway.contract.functions.verifyCertificate.return_value.call.return_value = (
            True,
            (bytes.fromhex("a" * 64), "0xIssuer", "0xStudent", "S001", "UNI01", "COMP01", 10, 11, 12, 1),
        )

        result = gateway.query(HASH_A)

        self.assertIsInstance(result, QueryResult)
        self.assertTrue(result.valid)
        self.assertEqual(result.record.cert_hash, HASH_A)
        self.assertEqual(result.record.company_code, "COMP01")

    def test_query_for_unknown_hash(self):
        gateway = Web3LedgerGateway(contract_path=str(CONTRACT_PATH), private_key="", web3=MagicMock())
        gateway.contract.functions.verifyCertificate.return_value.call.return_value = (
            False,
            (bytes(32), "0x0", "0x0", "", "", "", 0, 0, 0, 0),
        )

        result = gateway.query(HASH_A)

        self.assertFalse(result.exists)
        self.assertIsNone(result.record)

    @override_settings(LEDGER_GATEWAY_CLASS="ledger.memory.InMemoryLedgerGateway")
    def test_builder_uses_configured_class(self):
        self.assertIsInstance(build_ledger_gateway(), InMemoryLedgerGateway)
