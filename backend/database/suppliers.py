"""
Allowed Suppliers - Database Operations

Conflicting inserts on (owner_id, email) are always ignored so a later
discovery run never overwrites a supplier the owner has approved or edited.
"""

from sqlalchemy import or_

from .base import get_session, upsert
from .models.mail import AllowedSupplier


def _supplier_to_dict(s):
    return {
        "id": s.id,
        "owner_id": s.owner_id,
        "email": s.email,
        "label": s.label,
        "source_mailbox_id": s.source_mailbox_id,
        "source_provider": s.source_provider,
        "status": s.status,
        "created_at": s.created_at,
    }


def _insert_ignore(owner_id, email, label, status, source_mailbox_id, source_provider):
    with get_session() as session:
        stmt = (
            upsert(AllowedSupplier)
            .values(
                owner_id=owner_id,
                email=email.lower(),
                label=label,
                status=status,
                source_mailbox_id=source_mailbox_id,
                source_provider=source_provider,
            )
            .on_conflict_do_nothing(index_elements=["owner_id", "email"])
            .returning(AllowedSupplier.id)
        )
        supplier_id = session.execute(stmt).scalar_one_or_none()
        session.commit()
        return supplier_id


def insert_suggested_supplier(
    owner_id, email, label=None, source_mailbox_id=None, source_provider=None
):
    """Insert a discovered supplier. Returns the new id, or None if it existed."""
    return _insert_ignore(
        owner_id, email, label, "suggested", source_mailbox_id, source_provider
    )


def add_supplier(owner_id, email, label=None):
    """Manually add an active supplier. Returns the new id, or None if it existed."""
    return _insert_ignore(owner_id, email, label, "active", None, None)


def approve_supplier(owner_id, supplier_id):
    """Promote a suggested supplier to active."""
    with get_session() as session:
        supplier = (
            session.query(AllowedSupplier)
            .filter(
                AllowedSupplier.id == supplier_id,
                AllowedSupplier.owner_id == owner_id,
            )
            .first()
        )
        if not supplier:
            return False

        supplier.status = "active"
        session.commit()
        return True


def get_suppliers(owner_id, status=None):
    with get_session() as session:
        query = session.query(AllowedSupplier).filter(
            AllowedSupplier.owner_id == owner_id
        )
        if status:
            query = query.filter(AllowedSupplier.status == status)

        return [_supplier_to_dict(s) for s in query.order_by(AllowedSupplier.email).all()]


def get_supplier_emails_for_mailbox(owner_id, mailbox_id):
    """Senders whose mail is ingested from a mailbox.

    Covers suppliers discovered in that mailbox plus manually added ones
    that are not tied to any mailbox.
    """
    with get_session() as session:
        rows = (
            session.query(AllowedSupplier.email)
            .filter(
                AllowedSupplier.owner_id == owner_id,
                or_(
                    AllowedSupplier.source_mailbox_id == mailbox_id,
                    AllowedSupplier.source_mailbox_id.is_(None),
                ),
            )
            .order_by(AllowedSupplier.email)
            .all()
        )
        return [row.email for row in rows]


def delete_supplier(owner_id, supplier_id):
    with get_session() as session:
        deleted = (
            session.query(AllowedSupplier)
            .filter(
                AllowedSupplier.id == supplier_id,
                AllowedSupplier.owner_id == owner_id,
            )
            .delete(synchronize_session=False)
        )
        session.commit()
        return deleted > 0
