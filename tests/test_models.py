import math
import pytest
from pydantic import ValidationError
from src.collab.codes import generate_session_code, normalize_session_code
from src.collab.errors import InvalidRecordError, InvalidSessionCodeError
from src.collab.models import (
    CaseStats,
    CaseStatus,
    RawTestCase,
    TestCase,
    canonical_field,
)
from src.config.settings import settings

@pytest.mark.parametrize("value, expected", [
    ("Passed", CaseStatus.PASSED),
    ("failed", CaseStatus.FAILED),
    ("Fallido", CaseStatus.FAILED),
    ("N/A", CaseStatus.NOT_APPLICABLE),
    (None, CaseStatus.PENDING),
    ("desconocido", CaseStatus.PENDING),
])
def test_status_parse(value, expected):
    """测试状态值宽松解析"""
    assert CaseStatus.parse(value) == expected

def test_canonical_field_aliases():
    """测试导入列名映射"""
    assert canonical_field("casoPrueba") == "case_id"
    assert canonical_field("Resultado Esperado") == "expected_result"
    assert canonical_field("test-data") == "test_data"
    assert canonical_field("estado") == "status"
    assert canonical_field("unknown") is None

def test_raw_case_from_record():
    """测试原始记录解析"""
    raw = RawTestCase.from_record({
        "proceso": "Login",
        "casoPrueba": "TC-1",
        "comentarios": math.nan,
        "estado": "Aprobado",
        "id": "ignored",
    })
    assert raw.process == "Login"
    assert raw.case_id == "TC-1"
    assert raw.comments == ""
    assert raw.status == CaseStatus.PASSED

    # 规范字段名优先于别名
    raw = RawTestCase.from_record({"comentarios": "alias", "comments": "canonical"})
    assert raw.comments == "canonical"

    with pytest.raises(InvalidRecordError):
        RawTestCase.from_record(["not", "a", "dict"])

def test_test_case_is_immutable():
    """测试用例对象不可变，ID自动生成"""
    first = TestCase.from_raw(RawTestCase(case_id="TC-1"))
    second = TestCase.from_raw(RawTestCase(case_id="TC-1"))
    assert first.id != second.id
    with pytest.raises(ValidationError):
        first.comments = "changed"

def test_failure_requirements():
    """失败状态要求备注和证据"""
    case = TestCase(comments="  ", evidence="link")
    assert not case.meets_failure_requirements()
    case = case.model_copy(update={"comments": "reason"})
    assert case.meets_failure_requirements()
    assert case.is_commented

def test_case_stats():
    """测试状态统计与进度取整"""
    cases = [
        TestCase(status=CaseStatus.PASSED),
        TestCase(status=CaseStatus.FAILED),
        TestCase(status=CaseStatus.PENDING),
    ]
    stats = CaseStats.from_cases(cases)
    assert stats.total == 3
    assert stats.completed == 2
    assert stats.pending == 1
    assert stats.progress == 67
    assert CaseStats.from_cases(cases[:1] + cases[2:]).progress == 50
    assert CaseStats.from_cases([]).progress == 0

def test_generate_session_code():
    """测试会话码生成"""
    code = generate_session_code()
    assert len(code) == settings.session.SESSION_CODE_LENGTH
    assert all(ch in settings.session.SESSION_CODE_ALPHABET for ch in code)
    assert normalize_session_code(code) == code

def test_normalize_session_code():
    """测试会话码规范化"""
    assert normalize_session_code("  abc234 ") == "ABC234"
    for invalid in ("", "   ", None, "ABC", "ABCD0E", "ABCDEFG"):
        with pytest.raises(InvalidSessionCodeError):
            normalize_session_code(invalid)
