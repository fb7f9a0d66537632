from __future__ import annotations

import unittest

from app.errors import MappingValidationError
from app.validators.mapping_validator import MappingEntry, MappingValidator, resolve_system_field
from metrics.catalog import SystemField


class TestMappingValidator(unittest.TestCase):
    def setUp(self) -> None:
        self.validator = MappingValidator()
        self.columns = ("Customer ID", "Amount", "Order Date", "Region")

    def _codes(self, entries: list[MappingEntry]) -> list[str]:
        with self.assertRaises(MappingValidationError) as ctx:
            self.validator.validate(entries=entries, available_columns=self.columns)
        return [error.code for error in ctx.exception.errors]

    def test_accepts_valid_submission_in_canonical_spelling(self) -> None:
        plan = self.validator.validate(
            entries=[
                MappingEntry("customer id", "CustomerId"),
                MappingEntry("Amount", SystemField.ORDER_AMOUNT),
                MappingEntry("ORDER DATE", "order_date"),
            ],
            available_columns=self.columns,
        )

        self.assertEqual(
            plan.upserts,
            {
                "Customer ID": SystemField.CUSTOMER_ID,
                "Amount": SystemField.ORDER_AMOUNT,
                "Order Date": SystemField.ORDER_DATE,
            },
        )
        self.assertEqual(plan.removals, ())

    def test_sentinel_values_become_removals(self) -> None:
        plan = self.validator.validate(
            entries=[
                MappingEntry("Region", None),
                MappingEntry("Amount", "None"),
                MappingEntry("Order Date", "unmapped"),
            ],
            available_columns=self.columns,
        )

        self.assertEqual(plan.upserts, {})
        self.assertEqual(plan.removals, ("Region", "Amount", "Order Date"))

    def test_rejects_empty_submission(self) -> None:
        self.assertEqual(self._codes([]), ["empty_submission"])

    def test_rejects_unknown_source_column(self) -> None:
        codes = self._codes([MappingEntry("Missing", "Region")])
        self.assertIn("unknown_source_column", codes)

    def test_rejects_invalid_system_field(self) -> None:
        codes = self._codes([MappingEntry("Amount", "Revenue")])
        self.assertEqual(codes, ["invalid_system_field"])

    def test_rejects_duplicate_system_field(self) -> None:
        codes = self._codes(
            [
                MappingEntry("Amount", "OrderAmount"),
                MappingEntry("Region", "OrderAmount"),
            ]
        )
        self.assertEqual(codes, ["duplicate_system_field"])

    def test_rejects_duplicate_source_column_case_insensitively(self) -> None:
        codes = self._codes(
            [
                MappingEntry("Amount", "OrderAmount"),
                MappingEntry("amount", "Region"),
            ]
        )
        self.assertIn("duplicate_source_column", codes)

    def test_collects_every_error_before_raising(self) -> None:
        with self.assertRaises(MappingValidationError) as ctx:
            self.validator.validate(
                entries=[
                    MappingEntry("Missing", "Region"),
                    MappingEntry("Amount", "Bogus"),
                    MappingEntry("Region", "Region"),
                ],
                available_columns=self.columns,
            )

        codes = {error.code for error in ctx.exception.errors}
        self.assertEqual(codes, {"unknown_source_column", "invalid_system_field", "duplicate_system_field"})
        payload = ctx.exception.to_dict()
        self.assertEqual(len(payload["errors"]), 3)
        self.assertIn("Mapping validation failed", payload["message"])

    def test_validation_error_is_an_input_validation_error(self) -> None:
        from app.errors import InputValidationError

        with self.assertRaises(InputValidationError):
            self.validator.validate(entries=[], available_columns=self.columns)


class TestResolveSystemField(unittest.TestCase):
    def test_resolves_by_value_and_member_name(self) -> None:
        self.assertEqual(resolve_system_field("ProductCategory"), (SystemField.PRODUCT_CATEGORY, True))
        self.assertEqual(resolve_system_field("product_category"), (SystemField.PRODUCT_CATEGORY, True))

    def test_sentinels_resolve_to_none(self) -> None:
        for raw in (None, "", "  ", "none", "UNMAPPED"):
            self.assertEqual(resolve_system_field(raw), (None, True))

    def test_unknown_value_is_invalid(self) -> None:
        self.assertEqual(resolve_system_field("Salary"), (None, False))


if __name__ == "__main__":
    unittest.main()
