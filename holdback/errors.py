# holdback/errors.py - Exception hierarchy

class HoldbackError(Exception):
    """Base class for errors raised by the holdback backend"""


class UnknownTableError(HoldbackError):
    def __init__(self, table: str):
        super().__init__(f"Unknown table: {table}")
        self.table = table


class UnknownColumnError(HoldbackError):
    def __init__(self, table: str, column: str):
        super().__init__(f"Unknown column {column!r} on table {table}")
        self.table = table
        self.column = column


class RecordNotFoundError(HoldbackError):
    def __init__(self, table: str, record_id: int):
        super().__init__(f"{table} record {record_id} not found")
        self.table = table
        self.record_id = record_id


class IntranetError(HoldbackError):
    """Raised when the intranet holdbacks API cannot be read"""
