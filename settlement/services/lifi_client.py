"""LifiAggregator: LI.FI REST adapter for the route aggregator interface."""

import json
from typing import Any

import httpx

from settlement.core.errors import ExternalServiceError, WorkflowInputError
from settlement.core.models import ExecutableTransaction, RouteArtifact, RouteQuote
from settlement.core.settings import Settings
from settlement.core.utils import get_logger
from settlement.services.base import RouteAggregator
from settlement.services.http import build_client, request_with_retry

logger = get_logger("settlement.lifi")


class LifiAggregator(RouteAggregator):
    """Quotes same-chain swaps and builds their transactions through LI.FI."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize with settings and an optional preconfigured HTTP client."""
        self.settings = settings
        headers = {"x-lifi-integrator": settings.lifi_integrator}
        if settings.lifi_api_key:
            headers["x-lifi-api-key"] = settings.lifi_api_key
        self.client = client or build_client(settings.lifi_base_url, settings.http_timeout_seconds, headers=headers)

    def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        response = request_with_retry(self.client, "POST", url, json=body, retries=self.settings.http_retries)
        return response.json()

    def get_route(
        self,
        from_chain_id: int,
        to_chain_id: int,
        from_token_address: str,
        to_token_address: str,
        from_amount_base_units: str,
    ) -> RouteQuote:
        """Take the first route LI.FI offers and keep its first step as the artifact."""
        payload = self._post(
            "/advanced/routes",
            {
                "fromChainId": from_chain_id,
                "toChainId": to_chain_id,
                "fromTokenAddress": from_token_address,
                "toTokenAddress": to_token_address,
                "fromAmount": from_amount_base_units,
                "options": {
                    "slippage": self.settings.swap_slippage,
                    "order": "RECOMMENDED",
                    "integrator": self.settings.lifi_integrator,
                },
            },
        )
        routes = payload.get("routes") or []
        if not routes:
            msg = "No LI.FI routes found."
            raise WorkflowInputError(msg)
        steps = routes[0].get("steps") or []
        if not steps:
            msg = "No LI.FI steps found for route."
            raise WorkflowInputError(msg)
        step = steps[0]
        approval_address = (step.get("estimate") or {}).get("approvalAddress")
        logger.info(f"LI.FI route on chain {from_chain_id}: tool={step.get('tool')} approval={approval_address}")
        return RouteQuote(artifact=RouteArtifact(raw=json.dumps(step)), approval_address=approval_address)

    def get_executable_transaction(
        self, route: RouteArtifact, from_address: str, to_address: str
    ) -> ExecutableTransaction:
        """Ask LI.FI for the transaction request of a stored step."""
        try:
            step = json.loads(route.raw)
        except json.JSONDecodeError as exc:
            msg = f"Stored LI.FI step is not valid JSON: {exc}"
            raise WorkflowInputError(msg) from exc
        action = step.setdefault("action", {})
        action["fromAddress"] = from_address
        action["toAddress"] = to_address
        payload = self._post("/advanced/stepTransaction", step)
        request = payload.get("transactionRequest")
        if request is None:
            msg = "LI.FI stepTransaction response has no transactionRequest."
            raise ExternalServiceError(msg)
        return ExecutableTransaction(
            to=request.get("to"),
            data=request.get("data"),
            value=str(request.get("value") or "0"),
        )
