from datetime import datetime, time, timezone
from typing import Any

from tinydb import Query, TinyDB

from ledgerbot.models.schemas import (
    ACTIVE_STATUSES,
    Project,
    QueryFilters,
    Transaction,
    utcnow,
)

MUTABLE_FIELDS = ("amount", "merchant", "category")


class TransactionRepository:
    """The ledger. Rows are never removed; deletion is a status change."""

    def __init__(self, db: TinyDB):
        self.table = db.table("transactions")

    async def add(self, transaction: Transaction) -> Transaction:
        self.table.insert(transaction.model_dump(mode="json"))
        return transaction

    async def get(self, id: str) -> Transaction | None:
        Tx = Query()
        doc = self.table.get(Tx.id == id)
        if doc is None:
            return None
        return Transaction(**doc)

    async def get_active(self, id: str, project_id: str) -> Transaction | None:
        Tx = Query()
        doc = self.table.get(
            (Tx.id == id) & (Tx.project_id == project_id) & Tx.status.one_of(ACTIVE_STATUSES)
        )
        if doc is None:
            return None
        return Transaction(**doc)

    async def get_all(
        self, project_id: str | None = None, status: str | None = None
    ) -> list[Transaction]:
        """Every row, deleted ones included unless ``status`` says otherwise."""
        Tx = Query()
        cond = Tx.id.exists()
        if project_id is not None:
            cond &= Tx.project_id == project_id
        if status is not None:
            cond &= Tx.status == status
        transactions = [Transaction(**doc) for doc in self.table.search(cond)]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions

    async def find_last(self, project_id: str, user_id: int) -> Transaction | None:
        Tx = Query()
        docs = self.table.search(
            (Tx.project_id == project_id)
            & (Tx.user_id == user_id)
            & Tx.status.one_of(ACTIVE_STATUSES)
        )
        if not docs:
            return None
        latest = max(docs, key=lambda doc: datetime.fromisoformat(doc["created_at"]))
        return Transaction(**latest)

    async def update_field(self, id: str, field: str, value: Any) -> None:
        if field not in MUTABLE_FIELDS:
            raise ValueError(f"Field {field!r} cannot be modified")
        Tx = Query()
        self.table.update({field: value}, Tx.id == id)

    async def update_amount(self, id: str, amount: float, splits: dict[str, float]) -> None:
        """Amount and splits change together so balances stay consistent."""
        Tx = Query()
        self.table.update({"amount": amount, "splits": splits}, Tx.id == id)

    async def set_status(self, id: str, status: str) -> None:
        Tx = Query()
        updates: dict[str, Any] = {"status": status}
        if status == "confirmed":
            updates["confirmed_at"] = utcnow().isoformat()
        self.table.update(updates, Tx.id == id)

    async def search(self, project_id: str, filters: QueryFilters) -> list[Transaction]:
        """Non-deleted transactions for a project, newest first."""
        Tx = Query()
        cond = (Tx.project_id == project_id) & Tx.status.one_of(ACTIVE_STATUSES)
        if filters.category:
            category = filters.category.lower()
            cond &= Tx.category.test(lambda val: val.lower() == category)
        if filters.payer:
            payer = filters.payer.lower()
            cond &= Tx.payer.test(lambda val: val.lower() == payer)

        transactions = [Transaction(**doc) for doc in self.table.search(cond)]

        if filters.start_date:
            start = datetime.combine(filters.start_date, time.min, tzinfo=timezone.utc)
            transactions = [t for t in transactions if t.created_at >= start]
        if filters.end_date:
            end = datetime.combine(filters.end_date, time.max, tzinfo=timezone.utc)
            transactions = [t for t in transactions if t.created_at <= end]

        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions[: filters.limit]


class ProjectRepository:
    """One project per chat; members are the names seen posting in it."""

    def __init__(self, db: TinyDB, default_currency: str = "USD"):
        self.table = db.table("projects")
        self.default_currency = default_currency

    async def get(self, id: str) -> Project | None:
        Pr = Query()
        doc = self.table.get(Pr.id == id)
        if doc is None:
            return None
        return Project(**doc)

    async def get_or_create(self, id: str, name: str) -> Project:
        project = await self.get(id)
        if project is not None:
            return project
        project = Project(id=id, name=name, default_currency=self.default_currency)
        self.table.insert(project.model_dump(mode="json"))
        return project

    async def add_member(self, id: str, member: str) -> Project:
        project = await self.get(id)
        if project is None:
            raise ValueError(f"Unknown project {id}")
        if member not in project.members:
            project.members.append(member)
            Pr = Query()
            self.table.update({"members": project.members}, Pr.id == id)
        return project
