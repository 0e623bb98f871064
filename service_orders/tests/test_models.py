"""
Unit tests for order models.
"""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError
from shared.test_helpers import OrderDataFactory
from service_orders.app.orders.models import (
    OrderCreateRequest,
    OrderRecord,
    OrderUpdateRequest,
    PaymentStatus,
    PaymentType,
    Prescription,
    compute_balance,
    parse_amount,
    parse_bill_no,
)


class TestOrderRecord:
    """Test cases for OrderRecord."""

    def test_json_round_trip(self):
        """A record survives to_dict -> JSON -> from_dict unchanged."""
        record = OrderDataFactory.create_order_record(
            payment_type=PaymentType.UPI,
            payment_status=PaymentStatus.COMPLETED,
            frame_price="60",
            prescription=Prescription.from_dict({"dist": {"rightSph": "-1.25"}, "notes": "n"}),
        )

        restored = OrderRecord.from_dict(json.loads(json.dumps(record.to_dict())))

        assert restored == record

    def test_wire_keys_are_camel_case(self):
        """Serialized records use the wire field names."""
        data = OrderDataFactory.create_order_record().to_dict()
        assert data["_id"] == "B1-1"
        assert data["billNo"] == 1
        assert data["branchId"] == "B1"
        assert data["paymentStatus"] == "pending"
        assert data["prescription"]["dist"]["rightSph"] is None

    def test_component_change_recomputes_total(self):
        """Changing a component price resets the total to the component sum."""
        record = OrderDataFactory.create_order_record(frame_price="60", glass_price="40")

        updated = record.with_changes(glass_price="50", total="999")

        assert updated.total == "110"
        assert updated.balance == "90"

    def test_total_change_recomputes_balance(self):
        """Balance follows total and advance."""
        updated = OrderDataFactory.create_order_record().with_changes(total="150")
        assert updated.balance == "130"

    def test_advance_above_total_rejected(self):
        """The advance may not exceed the total."""
        with pytest.raises(ValidationError):
            OrderDataFactory.create_order_record().with_changes(advance="120")


class TestMoneyAndSelectors:
    """Test cases for amount and bill number parsing."""

    def test_compute_balance(self):
        assert compute_balance("100", "20") == "80"
        assert compute_balance("100.50", None) == "100.50"

    @pytest.mark.parametrize("value", ["-1", "abc", "NaN"])
    def test_invalid_amounts(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value, "total")

    def test_bill_no_accepts_numeric_strings(self):
        assert parse_bill_no("12") == 12
        assert parse_bill_no(3) == 3
        assert parse_bill_no(" 7 ") == 7

    @pytest.mark.parametrize("value", ["abc", "0", "-4", "", None, True, "1.5", "1_000", "\u0661\u0662", "+3", 2.0])
    def test_bill_no_rejects_malformed(self, value):
        with pytest.raises(ValidationError):
            parse_bill_no(value)

    def test_payment_status_alias(self):
        """``paid`` is read as ``completed``."""
        assert PaymentStatus.parse("paid") == PaymentStatus.COMPLETED
        assert PaymentStatus.parse("Completed") == PaymentStatus.COMPLETED
        with pytest.raises(ValidationError):
            PaymentStatus.parse("refunded")

    def test_payment_type_parse(self):
        assert PaymentType.parse("Bank Transfer") == PaymentType.BANK_TRANSFER
        with pytest.raises(ValidationError):
            PaymentType.parse("Barter")
        with pytest.raises(ValidationError):
            PaymentType.parse(None)


class TestRequestModels:
    """Test cases for request models."""

    def test_create_request_aliases(self):
        """Requests are read by their wire names."""
        request = OrderCreateRequest.model_validate(OrderDataFactory.create_order_request("B9"))
        assert request.branch_id == "B9"
        assert request.prescription.to_prescription().dist.right_sph == "-1.25"

    def test_create_request_rejects_unknown_fields(self):
        with pytest.raises(PydanticValidationError):
            OrderCreateRequest.model_validate(OrderDataFactory.create_order_request(billNo=5))

    def test_create_request_rejects_negative_amount(self):
        with pytest.raises(PydanticValidationError):
            OrderCreateRequest.model_validate(OrderDataFactory.create_order_request(total="-5"))

    def test_update_changes_only_set_fields(self):
        """Only fields the caller sent are changed; required fields cannot be cleared."""
        request = OrderUpdateRequest.model_validate({"framePrice": "70", "name": None, "frame": None})

        assert request.changes() == {"frame_price": "70", "frame": None}

    def test_update_rejects_identity_fields(self):
        """Identity and payment fields are not editable."""
        for field_name in ("billNo", "branchId", "paymentStatus", "balance"):
            with pytest.raises(PydanticValidationError):
                OrderUpdateRequest.model_validate({field_name: "x"})
