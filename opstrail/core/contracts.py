from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

CONTRACTS_DIR = Path(__file__).resolve().parents[1] / "contracts"


class SchemaValidationError(ValueError):
    pass


class ContractValidator:
    """Checks stored event rows and task context envelopes against the packaged schemas."""

    def __init__(self, schema_dir: Path | None = None) -> None:
        self._schema_dir = schema_dir or CONTRACTS_DIR
        self._event_record = _validator_for(self._schema_dir / "event_record.schema.json")
        self._task_context = _validator_for(self._schema_dir / "task_context.schema.json")

    def validate_event_record(self, row: dict[str, Any]) -> None:
        self._check(self._event_record, row)

    def validate_task_context(self, meta: Any) -> None:
        self._check(self._task_context, meta)

    @staticmethod
    def _check(validator: Draft202012Validator, payload: Any) -> None:
        errors = sorted(validator.iter_errors(payload), key=str)
        if not errors:
            return

        details = "; ".join(error.message for error in errors[:3])
        raise SchemaValidationError(details)


@lru_cache(maxsize=None)
def _validator_for(path: Path) -> Draft202012Validator:
    with path.open("r", encoding="utf-8") as f:
        schema = json.load(f)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)
