"""Accounting system client (Zoho Books compatible REST API)."""

from datetime import date
from typing import Any, Dict, List, Optional

import httpx
import structlog

from reminder_orchestrator.core.circuit_breaker import CircuitBreakerConfig, ServiceClient
from reminder_orchestrator.core.config import Settings
from reminder_orchestrator.core.retry import RetryConfig, create_async_retry_decorator
from reminder_orchestrator.schemas.accounting import CustomerRecord, InvoiceRecord

logger = structlog.get_logger(__name__)

SERVICE_NAME = "accounting"


class AccountingClient:
    """
    Read-only client for contacts and invoices.

    Every call is an idempotent GET, so each one is wrapped in the tenacity
    retry decorator on top of the circuit breaker.
    """

    def __init__(self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.page_size = config.accounting_page_size
        self.client = ServiceClient(
            service_name=SERVICE_NAME,
            base_url=config.accounting_api_url,
            timeout_seconds=config.accounting_timeout,
            headers={"Authorization": f"Zoho-oauthtoken {config.accounting_api_token}"},
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=config.circuit_breaker_failure_threshold,
                timeout=config.circuit_breaker_timeout_seconds,
            ),
            transport=transport,
        )
        retry_decorator = create_async_retry_decorator(
            RetryConfig(
                max_attempts=config.retry_max_attempts,
                base_delay=config.retry_base_delay_seconds,
            ),
            service_name=SERVICE_NAME,
        )
        self._get = retry_decorator(self.client.get)

    async def _get_all_pages(self, endpoint: str, key: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = await self._get(
                endpoint,
                params={**params, "page": page, "per_page": self.page_size},
            )
            items.extend(response.get(key) or [])
            if not (response.get("page_context") or {}).get("has_more_page"):
                break
            page += 1
        return items

    async def list_customers(self, organization_id: str) -> List[CustomerRecord]:
        """All customer contacts of the organization."""
        rows = await self._get_all_pages(
            "/contacts",
            "contacts",
            {"organization_id": organization_id, "contact_type": "customer"},
        )
        logger.info("Fetched customers", organization_id=organization_id, count=len(rows))
        return [CustomerRecord.model_validate(row) for row in rows]

    async def list_invoices(self, organization_id: str, due_date_min: date, due_date_max: date) -> List[InvoiceRecord]:
        """Invoices whose due date falls inside ``[due_date_min, due_date_max]``."""
        rows = await self._get_all_pages(
            "/invoices",
            "invoices",
            {
                "organization_id": organization_id,
                "due_date_start": due_date_min.isoformat(),
                "due_date_end": due_date_max.isoformat(),
            },
        )
        logger.info(
            "Fetched invoices",
            organization_id=organization_id,
            due_date_min=due_date_min.isoformat(),
            due_date_max=due_date_max.isoformat(),
            count=len(rows),
        )
        return [InvoiceRecord.model_validate(row) for row in rows]

    async def list_overdue_invoices(self, organization_id: str) -> List[InvoiceRecord]:
        """Unpaid invoices already past their due date, regardless of window."""
        rows = await self._get_all_pages(
            "/invoices",
            "invoices",
            {"organization_id": organization_id, "status": "overdue"},
        )
        logger.info("Fetched overdue invoices", organization_id=organization_id, count=len(rows))
        return [InvoiceRecord.model_validate(row) for row in rows]

    async def get_invoice_by_id(self, organization_id: str, invoice_id: str) -> InvoiceRecord:
        """Fetch one invoice; used to re-verify status right before a reminder goes out."""
        response = await self._get(
            f"/invoices/{invoice_id}",
            params={"organization_id": organization_id},
        )
        return InvoiceRecord.model_validate(response.get("invoice") or response)

    async def close(self) -> None:
        await self.client.close()

    def get_circuit_status(self) -> Dict[str, Any]:
        return self.client.get_circuit_status()
