from claimgate.models.claim import Claim, ClaimState, ClaimStatus, VerificationStatus  # noqa: F401
from claimgate.models.principal import Principal  # noqa: F401
