#Purpose: The settlement gateway "adapter/client".
#Sole responsibility: ask the ledger gateway to durably record a completed
#donation over HTTP and return its settlement id.
#Encapsulates gateway-specific details:
#URL construction (/v1/donations/confirm)
#auth header
#timeouts and error normalisation (everything becomes SettlementFailure)
#It should not contain matching rules or reputation logic.


from dotenv import load_dotenv
import logging
import os
from typing import Any, Dict, Optional
import requests

from common.errors import SettlementFailure

# Example in .env:
# SETTLEMENT_BASE_URL=http://localhost:8545/gateway
# SETTLEMENT_API_KEY=dev-key
load_dotenv()

logger = logging.getLogger(__name__)


class HttpSettlementClient:
    """
    Settlement Adapter / Client

    - POST {matchId, proof} to the gateway
    - 2xx with a settlementId in the body is success
    - anything else (non-2xx, timeout, connection error, malformed body)
      raises SettlementFailure so the caller can retry
    """
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: int = 10):
        self.base_url = (base_url or os.getenv("SETTLEMENT_BASE_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("SETTLEMENT_API_KEY")
        self.timeout = timeout

        if not self.base_url:
            raise ValueError("Settlement base URL not set. Please set SETTLEMENT_BASE_URL in the .env file.")

    def _headers(self, match_id: str) -> Dict[str, str]:
        # one settlement per match: a retried confirm replays instead of double-recording
        headers = {"Content-Type": "application/json", "Idempotency-Key": match_id}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def confirm_donation(self, match_id: str, proof: Dict[str, Any]) -> str:
        url = f"{self.base_url}/v1/donations/confirm"

        try:
            response = requests.post(
                url,
                json={"matchId": match_id, "proof": proof},
                headers=self._headers(match_id),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Settlement gateway unreachable for match %s", match_id, exc_info=True)
            raise SettlementFailure(f"Settlement gateway unreachable: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise SettlementFailure(f"Settlement gateway returned HTTP {response.status_code} for match {match_id}")

        try:
            data = response.json()
        except ValueError as exc:
            raise SettlementFailure("Settlement gateway returned a non-JSON body") from exc

        settlement_id = data.get("settlementId") if isinstance(data, dict) else None
        if not settlement_id:
            raise SettlementFailure(f"Settlement gateway response has no settlementId: {data!r}")

        return str(settlement_id)
