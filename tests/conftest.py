"""Test fixtures and utilities."""

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from ledger_intake.schemas.extraction import ExtractionResult
from ledger_intake.state_store import StateStore
from ledger_intake.storage.base import FileStore, StorageError, StoredFile

OWN_CNPJ = "98.765.432/0001-10"
SUPPLIER_CNPJ = "12.345.678/0001-90"

BOLETO_CODIGO_BARRAS = "23791954700001000003381286000000000000000040"
BOLETO_LINHA_DIGITAVEL = "23793.38128 60000.000003 00000.000400 1 95470000100000"

# Recognition service response for a supplier boleto
SAMPLE_BOLETO_RESPONSE = {
    "type": "expense",
    "documentType": "boleto",
    "issuerName": "Distribuidora Alfa Ltda",
    "issuerCnpj": SUPPLIER_CNPJ,
    "customerName": "Clinica Exemplo",
    "customerCnpj": OWN_CNPJ,
    "documentNumber": "4521",
    "totalValue": 1000.0,
    "issueDate": "2026-09-01",
    "dueDate": "2026-09-20",
    "linhaDigitavel": BOLETO_LINHA_DIGITAVEL,
    "codigoBarras": BOLETO_CODIGO_BARRAS,
    "description": "Material de escritorio",
    "confidence": 0.93,
    "classificationReason": "Boleto addressed to our CNPJ",
}

# Service invoice issued by us
SAMPLE_NFSE_RESPONSE = {
    "type": "revenue",
    "documentType": "nfse",
    "issuerName": "Clinica Exemplo",
    "issuerCnpj": OWN_CNPJ,
    "customerName": "Empresa Cliente SA",
    "customerCnpj": "11.222.333/0001-44",
    "documentNumber": "2026000123",
    "totalValue": "2.500,00",
    "netValue": "2350.00",
    "issueDate": "2026-09-15",
    "competenceYear": 2026,
    "competenceMonth": 9,
    "confidence": 0.88,
}

# Federal tax guide
SAMPLE_DARF_RESPONSE = {
    "type": "unknown",
    "documentType": "darf",
    "issuerName": "Receita Federal",
    "totalValue": 350.75,
    "dueDate": "2026-10-20",
    "codigoBarras": "85800000003-5 50750328202-6 61020269000-1 12345678901-2",
    "confidence": 0.97,
}


@pytest.fixture
def boleto_response() -> dict:
    """Recognition response for a supplier boleto."""
    return dict(SAMPLE_BOLETO_RESPONSE)


@pytest.fixture
def boleto_extraction() -> ExtractionResult:
    return ExtractionResult.from_api_response(SAMPLE_BOLETO_RESPONSE)


@pytest.fixture
def nfse_extraction() -> ExtractionResult:
    return ExtractionResult.from_api_response(SAMPLE_NFSE_RESPONSE)


@pytest.fixture
def darf_extraction() -> ExtractionResult:
    return ExtractionResult.from_api_response(SAMPLE_DARF_RESPONSE)


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with all migrations applied."""
    return StateStore(temp_db)


class InMemoryFileStore(FileStore):
    """File store keeping uploads in a dict; names in fail_names raise."""

    def __init__(self, fail_names: Optional[set[str]] = None):
        super().__init__("contabilidade")
        self.objects: dict[str, bytes] = {}
        self.fail_names = fail_names or set()

    def upload(self, path: str, data: bytes, mime_type: str) -> StoredFile:
        if any(path.endswith(name) for name in self.fail_names):
            raise StorageError("Payload too large")
        self.objects[path] = data
        return StoredFile(path=path, size=len(data), mime_type=mime_type)

    def exists(self, path: str) -> bool:
        return path in self.objects


class ScriptedRecognizer:
    """
    Recognizer returning canned results per file name.

    A result may be an exception instance, which is raised instead.
    Delays (seconds) make completions interleave; gates hold a call
    until the test releases it.
    """

    def __init__(self, default: Optional[ExtractionResult] = None):
        self.default = default
        self.results: dict[str, object] = {}
        self.delays: dict[str, float] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    def gate(self, file_name: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[file_name] = event
        return event

    async def analyze(self, data: bytes, mime_type: str, file_name: Optional[str] = None):
        self.calls.append(file_name)
        if file_name in self.gates:
            await self.gates[file_name].wait()
        else:
            await asyncio.sleep(self.delays.get(file_name, 0))
        result = self.results.get(file_name, self.default)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def file_store() -> InMemoryFileStore:
    return InMemoryFileStore()


@pytest.fixture
def recognizer(boleto_extraction) -> ScriptedRecognizer:
    """Recognizer answering every file with the sample boleto."""
    return ScriptedRecognizer(default=boleto_extraction)

