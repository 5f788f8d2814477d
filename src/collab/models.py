from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidRecordError


def utcnow() -> datetime:
    """当前UTC时间(带时区)"""
    return datetime.now(timezone.utc)


def new_case_id() -> str:
    """生成客户端用例ID"""
    return uuid.uuid4().hex


class CaseStatus(str, Enum):
    """用例执行状态"""
    PASSED = "Passed"
    FAILED = "Failed"
    NOT_APPLICABLE = "N/A"
    PENDING = "pending"

    @classmethod
    def parse(cls, value: Any) -> "CaseStatus":
        """宽松解析状态值，无法识别时返回待执行"""
        if isinstance(value, CaseStatus):
            return value
        if value is None:
            return cls.PENDING
        return cls.lookup(value) or cls.PENDING

    @classmethod
    def lookup(cls, value: Any) -> Optional["CaseStatus"]:
        """按取值或别名查找状态(忽略大小写)，无法识别返回None"""
        if isinstance(value, CaseStatus):
            return value
        if value is None:
            return None
        return _STATUS_ALIASES.get(str(value).strip().lower())


_STATUS_ALIASES = {
    "passed": CaseStatus.PASSED,
    "pass": CaseStatus.PASSED,
    "aprobado": CaseStatus.PASSED,
    "failed": CaseStatus.FAILED,
    "fail": CaseStatus.FAILED,
    "fallido": CaseStatus.FAILED,
    "n/a": CaseStatus.NOT_APPLICABLE,
    "na": CaseStatus.NOT_APPLICABLE,
    "not_applicable": CaseStatus.NOT_APPLICABLE,
    "notapplicable": CaseStatus.NOT_APPLICABLE,
    "pending": CaseStatus.PENDING,
    "pendiente": CaseStatus.PENDING,
}


class Role(str, Enum):
    """参与者角色"""
    EDITOR = "editor"
    VIEWER = "viewer"


# 可编辑的用例字段
TEXT_FIELDS = (
    "process",
    "case_id",
    "description",
    "test_data",
    "steps",
    "expected_result",
    "evidence",
    "comments",
)
EDITABLE_FIELDS = frozenset(TEXT_FIELDS + ("status",))

# 导入记录的字段别名(英文驼峰 / 原表格西语列名)
FIELD_ALIASES = {
    "process": ("process", "proceso"),
    "case_id": ("case_id", "caseid", "casoprueba", "caso_prueba", "test_case"),
    "description": ("description", "descripcion", "descripción"),
    "test_data": ("test_data", "testdata", "datosprueba", "datos_prueba"),
    "steps": ("steps", "pasoapaso", "paso_a_paso", "pasos"),
    "expected_result": ("expected_result", "expectedresult", "resultadoesperado", "resultado_esperado"),
    "evidence": ("evidence", "evidencia"),
    "comments": ("comments", "comentarios"),
    "status": ("status", "estado"),
}
_ALIAS_LOOKUP = {
    alias: field for field, aliases in FIELD_ALIASES.items() for alias in aliases
}


def canonical_field(name: Any) -> Optional[str]:
    """把导入列名映射为用例字段名，无法识别返回None"""
    key = str(name).strip().lower().replace(" ", "_").replace("-", "_")
    return _ALIAS_LOOKUP.get(key) or _ALIAS_LOOKUP.get(key.replace("_", ""))


class RawTestCase(BaseModel):
    """导入的原始用例记录(无ID)"""
    process: str = ""
    case_id: str = ""
    description: str = ""
    test_data: str = ""
    steps: str = ""
    expected_result: str = ""
    evidence: str = ""
    comments: str = ""
    status: CaseStatus = CaseStatus.PENDING

    model_config = ConfigDict(extra="ignore")

    @field_validator(*TEXT_FIELDS, mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        # pandas 空单元格是 float('nan')
        if isinstance(v, float) and v != v:
            return ""
        return str(v)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> CaseStatus:
        return CaseStatus.parse(v)

    @classmethod
    def from_record(cls, record: Any) -> "RawTestCase":
        """从任意导入记录构造，非映射类型直接拒绝"""
        if isinstance(record, RawTestCase):
            return record
        if isinstance(record, TestCase):
            return cls(**record.model_dump(include=set(EDITABLE_FIELDS)))
        if not isinstance(record, dict):
            raise InvalidRecordError(data={"record": repr(record)[:200]})
        values: Dict[str, Any] = {}
        for key, value in record.items():
            field = canonical_field(key)
            # 规范字段名优先于别名
            if field and (field not in values or key == field):
                values[field] = value
        return cls.model_validate(values)


class TestCase(BaseModel):
    """会话中的测试用例"""
    __test__ = False  # 避免被 pytest 收集

    id: str = Field(default_factory=new_case_id)
    process: str = ""
    case_id: str = ""
    description: str = ""
    test_data: str = ""
    steps: str = ""
    expected_result: str = ""
    evidence: str = ""
    comments: str = ""
    status: CaseStatus = CaseStatus.PENDING
    last_editor: Optional[str] = None
    last_edited_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @classmethod
    def from_raw(cls, raw: RawTestCase) -> "TestCase":
        """为原始记录分配新ID"""
        return cls(id=new_case_id(), **raw.model_dump())

    @property
    def is_commented(self) -> bool:
        return bool(self.comments.strip())

    def meets_failure_requirements(self) -> bool:
        """失败状态要求备注和证据均不为空"""
        return bool(self.comments.strip()) and bool(self.evidence.strip())


class SessionDocument(BaseModel):
    """会话文档：按会话码存储的完整用例列表"""
    code: str
    owner: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    revision: int = 0
    test_cases: List[TestCase] = Field(default_factory=list)


class Participant(BaseModel):
    """一次加入事件对应的参与者记录"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    identity: str
    role: Role
    online: bool = True
    joined_at: datetime = Field(default_factory=utcnow)
    last_seen: datetime = Field(default_factory=utcnow)


class CaseStats(BaseModel):
    """用例状态统计"""
    total: int = 0
    passed: int = 0
    failed: int = 0
    na: int = 0
    pending: int = 0
    completed: int = 0
    progress: int = 0

    @classmethod
    def from_cases(cls, cases: List[TestCase]) -> "CaseStats":
        counts: Dict[CaseStatus, int] = {status: 0 for status in CaseStatus}
        for case in cases:
            counts[case.status] += 1
        total = len(cases)
        completed = counts[CaseStatus.PASSED] + counts[CaseStatus.FAILED] + counts[CaseStatus.NOT_APPLICABLE]
        return cls(
            total=total,
            passed=counts[CaseStatus.PASSED],
            failed=counts[CaseStatus.FAILED],
            na=counts[CaseStatus.NOT_APPLICABLE],
            pending=counts[CaseStatus.PENDING],
            completed=completed,
            progress=int(completed * 100 / total + 0.5) if total else 0,
        )
