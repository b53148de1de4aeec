from datetime import date, datetime
from enum import Enum


class DateTimeSerializerVisitor:
    """Visitor to convert datetimes, dates and enums in nested structures to JSON-friendly values."""
    def visit(self, obj):
        if isinstance(obj, dict):
            result = {}
            for key, value in obj.items():
                result[key] = self.visit(value)
            return result
        elif isinstance(obj, (list, tuple)):
            return [self.visit(item) for item in obj]
        elif isinstance(obj, (datetime, date)):
            return obj.isoformat()
        elif isinstance(obj, Enum):
            return obj.value
        return obj
