"""
Project Line Items Repository
=============================

Read access to a project's invoices and estimate lines, and write access
to the invoice line item -> estimate line item link.

The tables belong to the host application; this repository only issues
raw SQL against them.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from estimate_match.schemas.domain import EstimateLineItem, Invoice, InvoiceLineItem
from estimate_match.utils.errors import DatabaseError
from estimate_match.utils.logger import get_logger

logger = get_logger(__name__)


class ProjectLineItemsRepository:
    """
    Repository for project invoice/estimate tables.

    Table Schema (host application):
        invoices: id, project_id, invoice_number, supplier_name
        invoice_line_items: id, invoice_id, description, quantity, unit_price,
            total_price, category, estimate_line_item_id, line_number
        estimates: id, project_id
        trades: id, estimate_id, name, sort_order
        estimate_line_items: id, trade_id, description, quantity, unit,
            material_cost_est, labor_cost_est, equipment_cost_est, sort_order
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize repository with async session.

        Args:
            session: SQLAlchemy async session
        """
        self._session = session

    async def get_project_invoices(self, project_id: str) -> list[Invoice]:
        """
        Load every invoice of a project with its line items.

        Args:
            project_id: Project identifier

        Returns:
            Invoices ordered by invoice number, lines by line number
        """
        query = text("""
            SELECT
                i.id AS invoice_id,
                i.invoice_number,
                i.supplier_name,
                li.id AS line_id,
                li.description,
                li.quantity,
                li.unit_price,
                li.total_price,
                li.category,
                li.estimate_line_item_id
            FROM invoices i
            LEFT JOIN invoice_line_items li ON li.invoice_id = i.id
            WHERE i.project_id = :project_id
            ORDER BY i.invoice_number, i.id, li.line_number
        """)

        try:
            result = await self._session.execute(query, {"project_id": project_id})
            rows = result.mappings().all()
        except Exception as e:
            logger.error("Failed to load project invoices", project_id=project_id, error=str(e))
            raise DatabaseError(
                message="Failed to load project invoices",
                details={"error": str(e), "project_id": project_id},
            ) from e

        headers: dict[str, dict] = {}
        lines: dict[str, list[InvoiceLineItem]] = {}
        for row in rows:
            invoice_id = str(row["invoice_id"])
            if invoice_id not in headers:
                headers[invoice_id] = {
                    "invoice_number": row["invoice_number"] or "",
                    "supplier_name": row["supplier_name"] or "",
                }
                lines[invoice_id] = []
            if row["line_id"] is None:
                continue
            lines[invoice_id].append(
                InvoiceLineItem(
                    id=str(row["line_id"]),
                    description=row["description"] or "",
                    quantity=float(row["quantity"] or 0),
                    unit_price=float(row["unit_price"] or 0),
                    total_price=float(row["total_price"] or 0),
                    category=row["category"],
                    estimate_line_item_id=(
                        str(row["estimate_line_item_id"]) if row["estimate_line_item_id"] else None
                    ),
                )
            )

        invoices = [
            Invoice(id=invoice_id, line_items=lines[invoice_id], **header)
            for invoice_id, header in headers.items()
        ]
        logger.debug("Project invoices loaded", project_id=project_id, invoices=len(invoices))
        return invoices

    async def get_project_estimates(self, project_id: str) -> list[EstimateLineItem]:
        """
        Load every estimate line of a project with its trade.

        Args:
            project_id: Project identifier

        Returns:
            Estimate lines ordered by trade, then line
        """
        query = text("""
            SELECT
                e.id,
                e.description,
                e.quantity,
                e.unit,
                e.material_cost_est,
                e.labor_cost_est,
                e.equipment_cost_est,
                t.id AS trade_id,
                t.name AS trade_name
            FROM estimate_line_items e
            JOIN trades t ON t.id = e.trade_id
            JOIN estimates es ON es.id = t.estimate_id
            WHERE es.project_id = :project_id
            ORDER BY t.sort_order, e.sort_order
        """)

        try:
            result = await self._session.execute(query, {"project_id": project_id})
            rows = result.mappings().all()
        except Exception as e:
            logger.error("Failed to load project estimates", project_id=project_id, error=str(e))
            raise DatabaseError(
                message="Failed to load project estimates",
                details={"error": str(e), "project_id": project_id},
            ) from e

        return [
            EstimateLineItem(
                id=str(row["id"]),
                description=row["description"] or "",
                quantity=float(row["quantity"] or 0),
                unit=row["unit"] or "",
                material_cost_est=float(row["material_cost_est"] or 0),
                labor_cost_est=float(row["labor_cost_est"] or 0),
                equipment_cost_est=float(row["equipment_cost_est"] or 0),
                trade_id=str(row["trade_id"]),
                trade_name=row["trade_name"] or "",
            )
            for row in rows
        ]

    async def link_estimate(
        self,
        invoice_line_item_id: str,
        estimate_line_item_id: str | None,
    ) -> bool:
        """
        Store (or clear) the estimate line linked to an invoice line item.

        Returns:
            True if the invoice line item exists
        """
        query = text("""
            UPDATE invoice_line_items
            SET estimate_line_item_id = :estimate_line_item_id
            WHERE id = :invoice_line_item_id
        """)

        try:
            result = await self._session.execute(
                query,
                {
                    "invoice_line_item_id": invoice_line_item_id,
                    "estimate_line_item_id": estimate_line_item_id,
                },
            )
        except Exception as e:
            logger.error("Failed to link estimate", item_id=invoice_line_item_id, error=str(e))
            raise DatabaseError(
                message="Failed to link estimate line item",
                details={"error": str(e), "invoice_line_item_id": invoice_line_item_id},
            ) from e

        updated = result.rowcount > 0
        logger.debug(
            "Estimate link updated",
            item_id=invoice_line_item_id,
            estimate_id=estimate_line_item_id,
            updated=updated,
        )
        return updated
