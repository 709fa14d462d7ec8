"""SQL store — SubscriptionStore on top of the Flask-SQLAlchemy models.

Each call is its own transaction: commit on success, rollback and raise
StoreError on any SQLAlchemy failure. Must run inside an app context.
"""

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from booking_billing.extensions import db
from booking_billing.errors import StoreError
from booking_billing.models import SubscriptionEvent, SubscriptionTier, UserSubscription
from booking_billing.store import SubscriptionStore, parse_order_by

logger = logging.getLogger(__name__)

MODELS = {
    SubscriptionTier.__tablename__: SubscriptionTier,
    UserSubscription.__tablename__: UserSubscription,
    SubscriptionEvent.__tablename__: SubscriptionEvent,
}


class SqlStore(SubscriptionStore):

    def _model(self, table):
        try:
            return MODELS[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}") from None

    def _filtered(self, model, match):
        query = model.query
        for column, value in match.items():
            attr = getattr(model, model.attribute_for(column))
            if isinstance(value, (list, tuple)):
                query = query.filter(attr.in_(value))
            elif value is None:
                query = query.filter(attr.is_(None))
            else:
                query = query.filter(attr == value)
        return query

    def _commit(self, action, table):
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreError(f"{action} on {table} failed: {e}") from e

    def upsert(self, table, row, on_conflict):
        model = self._model(table)
        key = {on_conflict: row[on_conflict]}

        try:
            obj = self._filtered(model, key).first()
            if obj is None:
                obj = model()
                db.session.add(obj)
            obj.apply_row(row)
            db.session.commit()
        except IntegrityError:
            # Lost an insert race on the conflict key: the row exists now
            db.session.rollback()
            logger.info(f"upsert on {table} raced on {on_conflict}, retrying as update")
            try:
                obj = self._filtered(model, key).first()
                if obj is None:
                    raise StoreError(f"upsert on {table} failed: conflicting row vanished")
                obj.apply_row(row)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise StoreError(f"upsert on {table} failed: {e}") from e
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreError(f"upsert on {table} failed: {e}") from e

        return obj.to_dict()

    def update(self, table, match, patch):
        model = self._model(table)
        try:
            rows = self._filtered(model, match).all()
            for obj in rows:
                obj.apply_row(patch)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreError(f"update on {table} failed: {e}") from e

        self._commit("update", table)
        return [obj.to_dict() for obj in rows]

    def select_one(self, table, match, order_by=None):
        model = self._model(table)
        try:
            query = self._filtered(model, match)
            if order_by:
                column, descending = parse_order_by(order_by)
                attr = getattr(model, model.attribute_for(column))
                query = query.order_by(attr.desc() if descending else attr.asc())
            obj = query.first()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreError(f"select on {table} failed: {e}") from e

        return obj.to_dict() if obj is not None else None

    def insert(self, table, row):
        model = self._model(table)
        obj = model()
        obj.apply_row(row)
        db.session.add(obj)
        self._commit("insert", table)
        return obj.to_dict()
