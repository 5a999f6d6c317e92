#Settlement: recording a completed donation outside the matching core.
#HttpSettlementClient talks to the ledger gateway, DonationCompletionService
#runs the completion saga on top of it.

from .completion import CompletionResult, DonationCompletionService
from .http_client import HttpSettlementClient

__all__ = ["CompletionResult", "DonationCompletionService", "HttpSettlementClient"]
