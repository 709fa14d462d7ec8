"""Row helpers shared by the billing models.

The reconciler only ever sees plain dicts (see booking_billing.store), so
each model knows how to turn itself into one keyed by column name.
"""

import uuid


def new_id():
    return str(uuid.uuid4())


class RowMixin:
    # Column name -> Python attribute, for columns whose name clashes with
    # something SQLAlchemy reserves (e.g. "metadata").
    __column_aliases__ = {}

    @classmethod
    def attribute_for(cls, column):
        return cls.__column_aliases__.get(column, column)

    def apply_row(self, row):
        for column, value in row.items():
            setattr(self, self.attribute_for(column), value)

    def to_dict(self):
        return {
            column.name: getattr(self, self.attribute_for(column.name))
            for column in self.__table__.columns
        }
