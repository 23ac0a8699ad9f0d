from decimal import Decimal

import pytest
from pydantic import ValidationError

from application.dto import PaginationParams
from application.dtos.cancellation import (
    CancellationRequestCreateDTO,
    CompleteRefundDTO,
    PolicyUpdateDTO,
    ProcessCancellationDTO,
)
from domain.cancellation.entity import CancellationAction


def test_request_accepts_client_field_variants():
    dto = CancellationRequestCreateDTO.model_validate(
        {
            "orderId": "ORD-1001",
            "reason": "  Changed my mind ",
            "customReason": "   ",
            "itemsToCancel": [{"itemId": 3, "refundAmount": "120.50"}],
        }
    )
    assert dto.order_ref == "ORD-1001"
    assert dto.reason == "Changed my mind"
    assert dto.additional_reason is None
    assert dto.items_to_cancel[0].item_id == 3
    assert dto.items_to_cancel[0].refund_amount == Decimal("120.50")


@pytest.mark.parametrize("reason", ["", "   "])
def test_request_rejects_blank_reason(reason):
    with pytest.raises(ValidationError):
        CancellationRequestCreateDTO.model_validate({"order_ref": 1, "reason": reason})


def test_request_rejects_negative_item_amount():
    with pytest.raises(ValidationError):
        CancellationRequestCreateDTO.model_validate(
            {"order_ref": 1, "reason": "late", "items_to_cancel": [{"item_id": 1, "refund_amount": "-1"}]}
        )


@pytest.mark.parametrize(
    "action,expected",
    [
        ("approve", CancellationAction.APPROVE),
        ("APPROVED", CancellationAction.APPROVE),
        (" reject ", CancellationAction.REJECT),
        ("Rejected", CancellationAction.REJECT),
    ],
)
def test_process_action_is_normalized(action, expected):
    dto = ProcessCancellationDTO.model_validate({"requestId": "CAN-1", "action": action})
    assert dto.action == expected
    assert dto.request_id == "CAN-1"


def test_process_rejects_unknown_action():
    with pytest.raises(ValidationError):
        ProcessCancellationDTO.model_validate({"request_id": 1, "action": "maybe"})


def test_process_reads_override_alias():
    dto = ProcessCancellationDTO.model_validate(
        {"request_id": 7, "action": "APPROVE", "refundPercentage": 60, "adminComments": ""}
    )
    assert dto.override_percentage == Decimal("60")
    assert dto.comments is None


@pytest.mark.parametrize("percentage", [150, -5, "100.01"])
def test_process_rejects_out_of_range_override(percentage):
    with pytest.raises(ValidationError):
        ProcessCancellationDTO.model_validate({"request_id": 7, "action": "APPROVE", "refundPercentage": percentage})

def test_complete_refund_transaction_alias():
    dto = CompleteRefundDTO.model_validate({"requestId": 4, "transactionId": " TX-9 "})
    assert dto.transaction_ref == "TX-9"
    assert CompleteRefundDTO.model_validate({"request_id": 4, "transactionId": ""}).transaction_ref is None


def test_policy_update_document_omits_unset_fields():
    dto = PolicyUpdateDTO.model_validate({"response_time_hours": 12, "bonuses": {"vip_bonus": 8}})
    assert dto.to_document() == {"response_time_hours": 12, "bonuses": {"vip_bonus": "8"}}


def test_policy_update_rejects_out_of_range_percentage():
    with pytest.raises(ValidationError):
        PolicyUpdateDTO.model_validate({"refund_percentage": 120})


def test_pagination_skip():
    params = PaginationParams(page=3, size=10)
    assert params.skip == 20
    assert params.limit == 10
