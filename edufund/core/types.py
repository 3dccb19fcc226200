from decimal import Decimal

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator


class MinorUnits(TypeDecorator):
    """Integer amount stored as a decimal string so no backend rounds it"""
    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class ExactDecimal(TypeDecorator):
    """Decimal stored as its string form"""
    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)
