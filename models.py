# models.py
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()

MONEY = db.Numeric(12, 2)
# times are stored as aware UTC
TIMESTAMP = db.DateTime(timezone=True)

CATEGORY_EXPENSE = "expense"
CATEGORY_SETTLEMENT = "settlement"

METHOD_MANUAL = "manual"
METHOD_UPI = "upi"


class SettlementStatus:
    PENDING_UTR = "pending_utr"
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    # settlement expense recorded before settlement_details existed
    LEGACY = "legacy"

    PENDING = (PENDING_UTR, PENDING_CONFIRMATION)
    LIVE = (PENDING_UTR, PENDING_CONFIRMATION, CONFIRMED, LEGACY)


def utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = "expense_users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100))
    email = db.Column(db.String(120), unique=True)
    # payout handle for UPI settlements, e.g. "name@bank"
    upi_id = db.Column(db.String(100), nullable=True)


class Group(db.Model):
    __tablename__ = "groups"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    created_by = db.Column(db.Integer, db.ForeignKey("expense_users.id"))


class GroupMember(db.Model):
    __tablename__ = "group_members"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("groups.id"))
    user_id = db.Column(db.Integer, db.ForeignKey("expense_users.id"))


class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("groups.id"))
    amount = db.Column(MONEY, nullable=False)
    description = db.Column(db.String(255))
    category = db.Column(db.String(20), nullable=False, default=CATEGORY_EXPENSE)
    date = db.Column(TIMESTAMP, default=utcnow)
    paid_by = db.Column(db.Integer, db.ForeignKey("expense_users.id"))
    created_by = db.Column(db.Integer, db.ForeignKey("expense_users.id"), nullable=True)
    last_edited_by = db.Column(db.Integer, db.ForeignKey("expense_users.id"), nullable=True)
    last_edited_at = db.Column(TIMESTAMP, nullable=True)
    created_at = db.Column(TIMESTAMP, default=utcnow)

    # Relationships
    group = db.relationship("Group", backref="expenses")
    payer = db.relationship("User", foreign_keys=[paid_by], backref="expenses_paid")

    @property
    def is_settlement(self):
        return self.category == CATEGORY_SETTLEMENT

    @property
    def receiver_id(self):
        """The member a settlement pays; a settlement has a single split."""
        if not self.is_settlement or not self.splits:
            return None
        return self.splits[0].user_id

    @property
    def settlement_status(self):
        if not self.is_settlement:
            return None
        if self.settlement_details is None:
            return SettlementStatus.LEGACY
        return self.settlement_details.settlement_status


class ExpenseSplit(db.Model):
    __tablename__ = "expense_splits"

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("expense_users.id"), nullable=False)
    owe_amount = db.Column(MONEY, nullable=False)

    # Splits live and die with their expense
    expense = db.relationship(
        "Expense",
        backref=db.backref("splits", cascade="all, delete-orphan", order_by="ExpenseSplit.id"),
    )


class SettlementDetails(db.Model):
    __tablename__ = "settlement_details"

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, unique=True)
    payment_method = db.Column(db.String(20), nullable=False, default=METHOD_MANUAL)
    settlement_status = db.Column(db.String(30), nullable=False)
    utr_reference = db.Column(db.String(16), nullable=True)
    initiated_by = db.Column(db.Integer, db.ForeignKey("expense_users.id"))
    confirmed_by = db.Column(db.Integer, db.ForeignKey("expense_users.id"), nullable=True)
    confirmed_at = db.Column(TIMESTAMP, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(TIMESTAMP, default=utcnow)

    expense = db.relationship(
        "Expense",
        backref=db.backref("settlement_details", uselist=False, cascade="all, delete-orphan"),
    )
