"""
app/validators/mapping_validator.py

Validation for source-column to system-field mapping submissions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from app.errors import MappingErrorDetail, MappingValidationError
from metrics.catalog import SystemField

_SENTINEL_TOKENS = frozenset({"", "none", "unmapped"})


@dataclass(frozen=True)
class MappingEntry:
    """
    One submitted binding. ``system_field=None`` removes the column's
    existing mapping; columns left out of a submission are not changed.
    """

    source_column: str
    system_field: SystemField | str | None


@dataclass(frozen=True)
class MappingPlan:
    """
    A validated submission expressed in the batch's canonical column spelling.
    """

    upserts: dict[str, SystemField] = field(default_factory=dict)
    removals: tuple[str, ...] = ()


def resolve_system_field(raw: SystemField | str | None) -> tuple[SystemField | None, bool]:
    """
    Return ``(field, valid)``. The sentinel (None, "None", "unmapped")
    resolves to ``(None, True)``; unknown values to ``(None, False)``.
    """

    if raw is None or isinstance(raw, SystemField):
        return raw, True
    token = str(raw).strip()
    if token.lower() in _SENTINEL_TOKENS:
        return None, True
    parsed = SystemField.parse(token)
    return parsed, parsed is not None


class MappingValidator:
    """
    Validates a mapping submission against the batch's known columns.

    Every problem is collected before raising so the caller can fix the
    whole submission in one pass.
    """

    def validate(
        self,
        *,
        entries: Sequence[MappingEntry],
        available_columns: Sequence[str],
    ) -> MappingPlan:
        if not entries:
            raise MappingValidationError(
                message="Mapping submission must contain at least one entry.",
                errors=[MappingErrorDetail(code="empty_submission", message="No mapping entries were provided.")],
            )

        columns_by_key = {name.casefold(): name for name in available_columns}
        errors: list[MappingErrorDetail] = []
        seen_sources: set[str] = set()
        claimed_by: dict[SystemField, str] = {}
        upserts: dict[str, SystemField] = {}
        removals: list[str] = []

        for entry in entries:
            source = (entry.source_column or "").strip()
            raw_field = entry.system_field.value if isinstance(entry.system_field, SystemField) else entry.system_field
            canonical = columns_by_key.get(source.casefold())

            if canonical is None:
                errors.append(
                    MappingErrorDetail(
                        code="unknown_source_column",
                        message="Source column does not exist in this batch.",
                        source_column=source,
                        system_field=raw_field,
                        context={"available_columns": list(available_columns)},
                    )
                )

            if source.casefold() in seen_sources:
                errors.append(
                    MappingErrorDetail(
                        code="duplicate_source_column",
                        message="Source column appears more than once in the submission.",
                        source_column=source,
                        system_field=raw_field,
                    )
                )
            seen_sources.add(source.casefold())

            system_field, valid = resolve_system_field(entry.system_field)
            if not valid:
                errors.append(
                    MappingErrorDetail(
                        code="invalid_system_field",
                        message="System field is not one of the supported values.",
                        source_column=source,
                        system_field=raw_field,
                        context={"allowed": [member.value for member in SystemField]},
                    )
                )
                continue

            if system_field is not None:
                if system_field in claimed_by:
                    errors.append(
                        MappingErrorDetail(
                            code="duplicate_system_field",
                            message="System field is mapped from more than one source column.",
                            source_column=source,
                            system_field=system_field.value,
                            context={"first_source_column": claimed_by[system_field]},
                        )
                    )
                else:
                    claimed_by[system_field] = source

            if canonical is None:
                continue
            if system_field is None:
                removals.append(canonical)
            else:
                upserts[canonical] = system_field

        if errors:
            codes = ", ".join(sorted({error.code for error in errors}))
            raise MappingValidationError(
                message=f"Mapping validation failed: {codes}.",
                errors=errors,
            )

        return MappingPlan(upserts=upserts, removals=tuple(removals))
