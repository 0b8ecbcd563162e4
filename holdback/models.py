# holdback/models.py - Pydantic models for records, view models and wire messages

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import date, datetime, timezone
from enum import Enum


class TableName(str, Enum):
    QUOTED_PROJECTS = "QuotedProjects"
    CATEGORIES = "Categories"
    COLUMN_DEFINITIONS = "ColumnDefinitions"
    CATEGORY_DATA = "CategoryData"
    CATEGORY_DATA_VALUES = "CategoryDataValues"
    EQUIPMENT_TYPE = "equipmentType"
    EQUIPMENT_COLUMNS = "equipmentColumns"
    EQUIPMENT_ROWS = "equipmentRows"
    EQUIPMENT_CELLS = "equipmentCells"


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL = "*"


class CategoryKind(str, Enum):
    CONSTRUCTION = "construction"
    INSPECTION = "inspection"


class WriteStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SUPERSEDED = "superseded"


# Persisted records

class QuotedProject(BaseModel):
    id: int
    quotation_ref: str = ""
    name: str = ""
    location: str = ""
    closing_date: Optional[date] = None
    closing_time: str = "12:00"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Category(BaseModel):
    id: int
    header: str
    type: CategoryKind
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ColumnDefinition(BaseModel):
    id: int
    category_id: int
    column_name: str
    column_order: int


class CategoryRow(BaseModel):
    id: int
    category_id: int
    row_number: int


class CategoryCell(BaseModel):
    id: int
    category_data_id: int
    column_definition_id: int
    value: str = ""


class EquipmentType(BaseModel):
    id: int
    name: str
    created_at: Optional[datetime] = None


class EquipmentColumn(BaseModel):
    id: int
    type_id: int
    name: str
    created_at: Optional[datetime] = None


class EquipmentRow(BaseModel):
    id: int
    type_id: int
    created_at: Optional[datetime] = None


class EquipmentCell(BaseModel):
    id: int
    row_id: int
    column_id: int
    value: str = ""
    created_at: Optional[datetime] = None


# Denormalised view models

class SectionColumn(BaseModel):
    id: int
    name: str


class SectionCell(BaseModel):
    id: Optional[int] = None
    category_data_id: int
    value: str = ""


class SectionTable(BaseModel):
    id: int
    columns: List[SectionColumn] = []
    row_ids: List[int] = []
    rows: List[List[SectionCell]] = []
    expanded_rows: List[bool] = []


class Section(BaseModel):
    id: int
    header: str
    table: SectionTable


class EquipmentData(BaseModel):
    types: List[EquipmentType] = []
    columns: List[EquipmentColumn] = []
    rows: List[EquipmentRow] = []
    cells: List[EquipmentCell] = []


class EquipmentGroupRow(BaseModel):
    id: int
    cells: List[EquipmentCell] = []


class EquipmentGroup(BaseModel):
    type: EquipmentType
    columns: List[EquipmentColumn] = []
    rows: List[EquipmentGroupRow] = []


# Realtime and writer messages

class ChangeEvent(BaseModel):
    table: str
    type: EventType
    record: Dict[str, Any] = {}
    old_record: Dict[str, Any] = {}
    commit_ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record_id(self) -> Optional[int]:
        source = self.record or self.old_record
        return source.get("id")


class WriteResult(BaseModel):
    status: WriteStatus
    key: Any = None
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == WriteStatus.OK


# Intranet

class HoldbackProject(BaseModel):
    proj_sn: str
    job_num: str = ""
    name: str = ""
    contractor: str = ""
    summary: str = ""
    status: str = ""
    proj_num: str = ""
    value: float = 0.0


# API request / response bodies

class PinRequest(BaseModel):
    pin: str


class ModifiedTimeResponse(BaseModel):
    table: Optional[str] = None
    updated_at: Optional[datetime] = None
