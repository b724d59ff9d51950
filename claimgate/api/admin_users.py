"""Admin registration review: approve or reject pending accounts."""

import logging

from fastapi import APIRouter, Depends

from claimgate.api.deps import get_registration_review, guard_route
from claimgate.schemas.schemas import ApprovalDecision
from claimgate.services.registration_review import RegistrationReview

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin-dashboard/users", tags=["admin"], dependencies=[Depends(guard_route)],
)


@router.put("/{user_id}/approve")
async def review_registration(
    user_id: str,
    body: ApprovalDecision,
    review: RegistrationReview = Depends(get_registration_review),
):
    """Approve (`approved: true`) or reject a pending SERVICE_PROVIDER / INSURER.

    The account is looked up first; anything not awaiting approval is a 409.
    """
    if body.approved:
        user = await review.approve(user_id)
    else:
        user = await review.reject(user_id, body.rejection_reason)
    return {
        "id": user_id,
        "approved": body.approved,
        "user": user.model_dump(by_alias=True, mode="json"),
    }
