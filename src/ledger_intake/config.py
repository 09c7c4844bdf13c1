"""
Configuration management (SSOT).

This module defines ALL configuration for the intake pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- max_concurrent bounds the number of documents in upload+analysis at once
- Justification minimum length applies to both edit and NF exemption reasons
- Matching thresholds are additive points, not probabilities
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .schemas.records import PaymentInstrument


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_ALLOWED_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png", ".webp", ".xml")


@dataclass
class IntakeConfig:
    """Intake queue settings."""

    # Maximum documents simultaneously uploading or analyzing
    max_concurrent: int = 2
    # Accepted file extensions (lowercase, with dot)
    allowed_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    # Files above this size are rejected at enqueue time
    max_file_size_bytes: int = 10 * 1024 * 1024


@dataclass
class RecognitionConfig:
    """Recognition service (OCR/AI extraction) settings."""

    base_url: str = "http://localhost:54321/functions/v1"
    token: str = ""
    # Endpoint for images/PDFs (base64 payload)
    document_endpoint: str = "/analyze-accounting-document"
    # Endpoint for structured XML fiscal documents
    xml_endpoint: str = "/analyze-accounting-xml"
    # Read timeout for the remote call (seconds)
    timeout_seconds: int = 60


@dataclass
class StorageConfig:
    """File store settings.

    backend:
    - "local": files are written below root_path
    - "http": files are PUT to base_url (object storage gateway)
    """

    backend: str = "local"
    root_path: Path = field(default_factory=lambda: Path("data/documents"))
    base_url: str = ""
    token: str = ""
    bucket: str = "accounting-documents"
    # Logical folder prefix of every stored path
    folder: str = "contabilidade"
    timeout_seconds: int = 30
    max_retries: int = 3


@dataclass
class MatchingConfig:
    """Boleto-to-supplier-invoice matching settings."""

    # Amount tolerance band, percent of the invoice total
    tolerance_percent: float = 5.0
    # Only invoices issued within this window are candidates
    window_days: int = 90
    # Candidate pool cap (bounds scoring work)
    candidate_limit: int = 100
    # Candidates below this score are dropped
    min_score: int = 40


@dataclass
class WorkflowConfig:
    """Classification and confirmation settings."""

    # Minimum characters for edit justifications and NF exemption reasons
    min_justification_length: int = 10
    # Tax ids (CNPJ) owned by this organization, used to classify
    # documents the recognition service could not classify
    own_tax_ids: list[str] = field(default_factory=list)
    # Tenant/unit identifier used in storage paths and records
    unit_id: str = "default"
    # Payment instrument used when confirm_all_ready() commits expenses
    # (cash_on_hand, pix, bank_transfer); empty skips expenses
    default_payment_instrument: str = ""


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    intake: IntakeConfig = field(default_factory=IntakeConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.intake.max_concurrent < 1:
            errors.append("intake.max_concurrent must be >= 1")
        if not self.intake.allowed_extensions:
            errors.append("intake.allowed_extensions must not be empty")
        for ext in self.intake.allowed_extensions:
            if not ext.startswith("."):
                errors.append(f"intake.allowed_extensions entry '{ext}' must start with '.'")

        if not self.recognition.base_url:
            errors.append("recognition.base_url is required")

        if self.storage.backend not in ("local", "http"):
            errors.append("storage.backend must be 'local' or 'http'")
        if self.storage.backend == "http" and not self.storage.base_url:
            errors.append("storage.base_url is required when storage.backend is 'http'")

        if self.matching.tolerance_percent < 0:
            errors.append("matching.tolerance_percent must be >= 0")
        if self.matching.candidate_limit < 1:
            errors.append("matching.candidate_limit must be >= 1")

        if self.workflow.min_justification_length < 1:
            errors.append("workflow.min_justification_length must be >= 1")
        instrument = self.workflow.default_payment_instrument
        if instrument and instrument not in {p.value for p in PaymentInstrument}:
            errors.append(
                f"workflow.default_payment_instrument '{instrument}' must be one of "
                "cash_on_hand, pix, bank_transfer"
            )

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigValidationError if validate() reports problems."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default  # Keep default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LEDGER_INTAKE_RECOGNITION_URL
    - LEDGER_INTAKE_RECOGNITION_TOKEN
    - LEDGER_INTAKE_STORAGE_URL
    - LEDGER_INTAKE_STORAGE_TOKEN
    - LEDGER_INTAKE_MAX_CONCURRENT
    - LEDGER_INTAKE_UNIT_ID
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Intake
    intake_data = data.get("intake", {})
    extensions = intake_data.get("allowed_extensions")
    intake = IntakeConfig(
        max_concurrent=_env_int(
            "LEDGER_INTAKE_MAX_CONCURRENT", intake_data.get("max_concurrent", 2)
        ),
        allowed_extensions=(
            tuple(ext.lower() for ext in extensions) if extensions else DEFAULT_ALLOWED_EXTENSIONS
        ),
        max_file_size_bytes=intake_data.get("max_file_size_bytes", 10 * 1024 * 1024),
    )

    # Recognition
    recognition_data = data.get("recognition", {})
    recognition = RecognitionConfig(
        base_url=os.environ.get(
            "LEDGER_INTAKE_RECOGNITION_URL",
            recognition_data.get("base_url", "http://localhost:54321/functions/v1"),
        ),
        token=os.environ.get(
            "LEDGER_INTAKE_RECOGNITION_TOKEN", recognition_data.get("token", "")
        ),
        document_endpoint=recognition_data.get(
            "document_endpoint", "/analyze-accounting-document"
        ),
        xml_endpoint=recognition_data.get("xml_endpoint", "/analyze-accounting-xml"),
        timeout_seconds=int(recognition_data.get("timeout_seconds", 60)),
    )

    # Storage
    storage_data = data.get("storage", {})
    storage = StorageConfig(
        backend=storage_data.get("backend", "local"),
        root_path=Path(storage_data.get("root_path", "data/documents")),
        base_url=os.environ.get("LEDGER_INTAKE_STORAGE_URL", storage_data.get("base_url", "")),
        token=os.environ.get("LEDGER_INTAKE_STORAGE_TOKEN", storage_data.get("token", "")),
        bucket=storage_data.get("bucket", "accounting-documents"),
        folder=storage_data.get("folder", "contabilidade"),
        timeout_seconds=storage_data.get("timeout_seconds", 30),
        max_retries=storage_data.get("max_retries", 3),
    )

    # Matching
    matching_data = data.get("matching", {})
    matching = MatchingConfig(
        tolerance_percent=float(matching_data.get("tolerance_percent", 5.0)),
        window_days=matching_data.get("window_days", 90),
        candidate_limit=matching_data.get("candidate_limit", 100),
        min_score=matching_data.get("min_score", 40),
    )

    # Workflow
    workflow_data = data.get("workflow", {})
    workflow = WorkflowConfig(
        min_justification_length=workflow_data.get("min_justification_length", 10),
        own_tax_ids=[str(t) for t in workflow_data.get("own_tax_ids", [])],
        unit_id=os.environ.get("LEDGER_INTAKE_UNIT_ID", workflow_data.get("unit_id", "default")),
        default_payment_instrument=str(workflow_data.get("default_payment_instrument") or ""),
    )

    state_db = data.get("state_db_path", "data/state.db")

    return Config(
        intake=intake,
        recognition=recognition,
        storage=storage,
        matching=matching,
        workflow=workflow,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Financial document intake configuration
#
# Secrets (tokens) can be supplied through environment variables instead:
# LEDGER_INTAKE_RECOGNITION_TOKEN, LEDGER_INTAKE_STORAGE_TOKEN

intake:
  max_concurrent: 2                        # Documents uploading/analyzing at once
  allowed_extensions: [".pdf", ".jpg", ".jpeg", ".png", ".webp", ".xml"]
  max_file_size_bytes: 10485760            # 10 MB

recognition:
  base_url: "http://localhost:54321/functions/v1"
  token: "YOUR_RECOGNITION_TOKEN"
  document_endpoint: "/analyze-accounting-document"
  xml_endpoint: "/analyze-accounting-xml"
  timeout_seconds: 60

storage:
  backend: "local"                         # local | http
  root_path: "data/documents"              # Used by the local backend
  base_url: ""                             # Used by the http backend
  token: ""
  bucket: "accounting-documents"
  folder: "contabilidade"

matching:
  tolerance_percent: 5.0                   # Amount band for boleto -> NF matching
  window_days: 90                          # Only NFs issued in this window
  candidate_limit: 100
  min_score: 40

workflow:
  min_justification_length: 10
  own_tax_ids: []                          # CNPJs of this organization
  unit_id: "default"
  default_payment_instrument: ""           # Batch confirmation: pix, bank_transfer, cash_on_hand

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
