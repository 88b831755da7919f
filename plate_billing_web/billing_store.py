"""Persistence layer for clients, challans, returns and bills.

This module abstracts persistence so the web app can keep its records in an
external database. It defaults to SQLite for local development, but accepts
any SQLAlchemy-compatible URL (e.g. PostgreSQL/MySQL) for shared deployments.

The store is the engine's collaborator on both sides: ``fetch_transactions``
supplies raw challans and returns for a client, and ``save_bill`` persists the
computed ``BillResult`` together with its line items.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.orm import declarative_base, relationship, selectinload, sessionmaker

from plate_billing.data_models import BillResult, Client, RawIssue, RawLineItem, RawReturn
from plate_billing.utils import next_bill_number

logger = logging.getLogger(__name__)

Base = declarative_base()

MONEY = Numeric(14, 2)


class ClientModel(Base):
    __tablename__ = "clients"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    site = Column(String(255), nullable=False, default="")
    mobile_number = Column(String(32), nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ChallanModel(Base):
    __tablename__ = "challans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challan_number = Column(String(64), nullable=False)
    client_id = Column(String(64), ForeignKey("clients.id"), index=True, nullable=False)
    challan_date = Column(Date, nullable=False)
    driver_name = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    items = relationship("ChallanItemModel", cascade="all, delete-orphan", order_by="ChallanItemModel.id")


class ChallanItemModel(Base):
    __tablename__ = "challan_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challan_id = Column(Integer, ForeignKey("challans.id"), index=True, nullable=False)
    plate_size = Column(String(32), nullable=False)
    borrowed_quantity = Column(Integer, nullable=False, default=0)
    borrowed_stock = Column(Integer, nullable=False, default=0)  # partner stock


class ReturnModel(Base):
    __tablename__ = "returns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    return_challan_number = Column(String(64), nullable=False)
    client_id = Column(String(64), ForeignKey("clients.id"), index=True, nullable=False)
    return_date = Column(Date, nullable=False)
    driver_name = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    items = relationship("ReturnLineItemModel", cascade="all, delete-orphan", order_by="ReturnLineItemModel.id")


class ReturnLineItemModel(Base):
    __tablename__ = "return_line_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    return_id = Column(Integer, ForeignKey("returns.id"), index=True, nullable=False)
    plate_size = Column(String(32), nullable=False)
    returned_quantity = Column(Integer, nullable=False, default=0)
    returned_borrowed_stock = Column(Integer, nullable=False, default=0)
    damaged_quantity = Column(Integer, nullable=False, default=0)
    lost_quantity = Column(Integer, nullable=False, default=0)
    damage_notes = Column(Text)


class BillModel(Base):
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bill_number = Column(String(32), unique=True, nullable=False)
    client_id = Column(String(64), ForeignKey("clients.id"), index=True, nullable=False)
    billing_period_start = Column(Date, nullable=False)
    billing_period_end = Column(Date, nullable=False)
    total_udhar_quantity = Column(Integer, nullable=False)
    total_jama_quantity = Column(Integer, nullable=False)
    daily_rate = Column(MONEY, nullable=False)
    total_rent = Column(MONEY, nullable=False)
    service_charge = Column(MONEY, nullable=False)
    worker_charge = Column(MONEY, nullable=False)
    lost_plate_penalty = Column(MONEY, nullable=False)
    core_total = Column(MONEY, nullable=False)
    extra_charges_total = Column(MONEY, nullable=False)
    discounts_total = Column(MONEY, nullable=False)
    payments_total = Column(MONEY, nullable=False)
    advance_paid = Column(MONEY, nullable=False)
    final_due = Column(MONEY, nullable=False)
    balance_carry_forward = Column(MONEY, nullable=False)
    account_closure = Column(String(16), nullable=False, default="continue")
    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lines = relationship("BillLineModel", cascade="all, delete-orphan", order_by="BillLineModel.id")


class BillLineModel(Base):
    __tablename__ = "bill_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), index=True, nullable=False)
    line_type = Column(String(16), nullable=False)  # 'extra', 'discount' or 'payment'
    note = Column(String(255), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False, default=1)
    unit_price = Column(MONEY, nullable=False)
    total = Column(MONEY, nullable=False)


def _bill_sequence(bill_number: str) -> int:
    suffix = bill_number.rsplit("-", 1)[-1]
    return int(suffix) if suffix.isdigit() else -1


class BillingStore:
    """Database-backed store for depot records."""

    def __init__(self, url: str) -> None:
        self._engine = create_engine(url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)

    # Clients

    def add_client(self, client: Client) -> None:
        with self._session_factory() as session:
            session.add(
                ClientModel(
                    id=client.id,
                    name=client.name,
                    site=client.site,
                    mobile_number=client.mobile_number,
                )
            )
            session.commit()
        logger.info("Added client %s (%s)", client.id, client.name)

    def get_client(self, client_id: str) -> Optional[Client]:
        with self._session_factory() as session:
            row = session.get(ClientModel, client_id)
            return self._client_from_row(row) if row else None

    def list_clients(self) -> List[Client]:
        with self._session_factory() as session:
            rows = session.execute(select(ClientModel).order_by(ClientModel.name.asc())).scalars()
            return [self._client_from_row(row) for row in rows]

    # Transactions

    def add_challan(self, client_id: str, number: str, challan_date: date, items: Iterable[RawLineItem]) -> int:
        row = ChallanModel(
            challan_number=number,
            client_id=client_id,
            challan_date=challan_date,
            items=[
                ChallanItemModel(
                    plate_size=item.plate_size,
                    borrowed_quantity=item.quantity,
                    borrowed_stock=item.partner_quantity or 0,
                )
                for item in items
            ],
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
            return row.id

    def add_return(self, client_id: str, number: str, return_date: date, items: Iterable[RawLineItem]) -> int:
        row = ReturnModel(
            return_challan_number=number,
            client_id=client_id,
            return_date=return_date,
            items=[
                ReturnLineItemModel(
                    plate_size=item.plate_size,
                    returned_quantity=item.quantity,
                    returned_borrowed_stock=item.partner_quantity or 0,
                    damaged_quantity=item.damaged_quantity or 0,
                    lost_quantity=item.lost_quantity or 0,
                )
                for item in items
            ],
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
            return row.id

    def fetch_transactions(
        self,
        client_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        after: Optional[date] = None,
    ) -> Tuple[List[RawIssue], List[RawReturn]]:
        """Return a client's challans and returns within an inclusive window.

        ``after`` excludes everything dated on or before it; it is used to
        continue from a previous bill's end date.
        """
        challan_query = (
            select(ChallanModel)
            .options(selectinload(ChallanModel.items))
            .where(ChallanModel.client_id == client_id)
            .order_by(ChallanModel.challan_date.asc(), ChallanModel.id.asc())
        )
        return_query = (
            select(ReturnModel)
            .options(selectinload(ReturnModel.items))
            .where(ReturnModel.client_id == client_id)
            .order_by(ReturnModel.return_date.asc(), ReturnModel.id.asc())
        )
        if start is not None:
            challan_query = challan_query.where(ChallanModel.challan_date >= start)
            return_query = return_query.where(ReturnModel.return_date >= start)
        if after is not None:
            challan_query = challan_query.where(ChallanModel.challan_date > after)
            return_query = return_query.where(ReturnModel.return_date > after)
        if end is not None:
            challan_query = challan_query.where(ChallanModel.challan_date <= end)
            return_query = return_query.where(ReturnModel.return_date <= end)

        with self._session_factory() as session:
            issues = [
                RawIssue(
                    document_number=row.challan_number,
                    date=row.challan_date,
                    items=[
                        RawLineItem(
                            plate_size=item.plate_size,
                            quantity=item.borrowed_quantity,
                            partner_quantity=item.borrowed_stock,
                        )
                        for item in row.items
                    ],
                )
                for row in session.execute(challan_query).scalars()
            ]
            returns = [
                RawReturn(
                    document_number=row.return_challan_number,
                    date=row.return_date,
                    items=[
                        RawLineItem(
                            plate_size=item.plate_size,
                            quantity=item.returned_quantity,
                            partner_quantity=item.returned_borrowed_stock,
                            damaged_quantity=item.damaged_quantity,
                            lost_quantity=item.lost_quantity,
                        )
                        for item in row.items
                    ],
                )
                for row in session.execute(return_query).scalars()
            ]
        logger.debug(
            "Fetched %d challans and %d returns for client %s", len(issues), len(returns), client_id
        )
        return issues, returns

    # Bills

    def next_bill_number(self) -> str:
        with self._session_factory() as session:
            numbers = session.execute(select(BillModel.bill_number)).scalars().all()
        # Compare numerically so BILL-10000 sorts after BILL-9999.
        last = max(numbers, key=_bill_sequence, default=None)
        return next_bill_number(last)

    def save_bill(self, bill: BillResult) -> int:
        """Persist the bill's totals and line items in a single transaction."""
        if not bill.bill_number:
            raise ValueError("Bill number must be assigned before saving")
        lines = [
            BillLineModel(
                line_type="extra",
                note=line.note,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total=line.total,
            )
            for line in bill.extra_charges
        ]
        lines.extend(
            BillLineModel(
                line_type="discount",
                note=line.note,
                quantity=line.quantity,
                unit_price=abs(line.unit_price),
                total=abs(line.total),
            )
            for line in bill.discounts
        )
        lines.extend(
            BillLineModel(line_type="payment", note=p.note, quantity=1, unit_price=p.amount, total=p.amount)
            for p in bill.payments
        )
        row = BillModel(
            bill_number=bill.bill_number,
            client_id=bill.client.id,
            billing_period_start=bill.period_start,
            billing_period_end=bill.bill_date,
            total_udhar_quantity=bill.total_plates_issued,
            total_jama_quantity=bill.total_plates_returned,
            daily_rate=bill.rates.daily_rate,
            total_rent=bill.total_rent,
            service_charge=bill.service_charge,
            worker_charge=bill.worker_charge,
            lost_plate_penalty=bill.lost_plate_penalty,
            core_total=bill.core_total,
            extra_charges_total=bill.extra_charges_total,
            discounts_total=bill.discounts_total,
            payments_total=bill.payments_total,
            advance_paid=bill.advance_paid,
            final_due=bill.final_due,
            balance_carry_forward=bill.balance_carry_forward,
            account_closure=bill.account_closure,
            lines=lines,
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
            logger.info(
                "Saved bill %s for client %s (final due %s)", bill.bill_number, bill.client.id, bill.final_due
            )
            return row.id

    def get_bill(self, bill_number: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as session:
            row = session.execute(
                select(BillModel).options(selectinload(BillModel.lines)).where(BillModel.bill_number == bill_number)
            ).scalar_one_or_none()
            return self._bill_to_dict(row) if row else None

    def list_bills(self, client_id: str) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            rows = session.execute(
                select(BillModel)
                .options(selectinload(BillModel.lines))
                .where(BillModel.client_id == client_id)
                .order_by(BillModel.billing_period_end.asc(), BillModel.id.asc())
            ).scalars()
            return [self._bill_to_dict(row) for row in rows]

    def last_bill_end_date(self, client_id: str) -> Optional[date]:
        """End date of the client's latest bill; the next bill continues from the following day."""
        with self._session_factory() as session:
            return session.execute(
                select(BillModel.billing_period_end)
                .where(BillModel.client_id == client_id)
                .order_by(BillModel.billing_period_end.desc())
                .limit(1)
            ).scalar_one_or_none()

    @staticmethod
    def _client_from_row(row: ClientModel) -> Client:
        return Client(id=row.id, name=row.name, site=row.site, mobile_number=row.mobile_number)

    @staticmethod
    def _bill_to_dict(row: BillModel) -> Dict[str, Any]:
        def amount(value: Decimal) -> str:
            return str(Decimal(value).quantize(Decimal("0.01")))

        return {
            "bill_number": row.bill_number,
            "client_id": row.client_id,
            "period_start": row.billing_period_start.isoformat(),
            "period_end": row.billing_period_end.isoformat(),
            "total_plates_issued": row.total_udhar_quantity,
            "total_plates_returned": row.total_jama_quantity,
            "daily_rate": amount(row.daily_rate),
            "total_rent": amount(row.total_rent),
            "service_charge": amount(row.service_charge),
            "worker_charge": amount(row.worker_charge),
            "lost_plate_penalty": amount(row.lost_plate_penalty),
            "core_total": amount(row.core_total),
            "extra_charges_total": amount(row.extra_charges_total),
            "discounts_total": amount(row.discounts_total),
            "payments_total": amount(row.payments_total),
            "advance_paid": amount(row.advance_paid),
            "final_due": amount(row.final_due),
            "balance_carry_forward": amount(row.balance_carry_forward),
            "account_closure": row.account_closure,
            "generated_at": row.generated_at.isoformat(),
            "lines": [
                {
                    "type": line.line_type,
                    "note": line.note,
                    "quantity": str(line.quantity),
                    "unit_price": amount(line.unit_price),
                    "total": amount(line.total),
                }
                for line in row.lines
            ],
        }


def create_store_from_env(url: str | None) -> BillingStore:
    return BillingStore(url or "sqlite:///plate_billing.sqlite3")
