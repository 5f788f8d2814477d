from datetime import date
from io import BytesIO
import json
import pandas as pd
import pytest
from src.collab.errors import ImportFormatError, InvalidRecordError
from src.collab.models import CaseStatus, TestCase
from src.importers import export_cases_json, parse_json_cases, parse_spreadsheet

def test_parse_json_cases():
    """测试JSON用例解析(兼容原表格字段名)"""
    content = json.dumps([
        {"proceso": "Login", "casoPrueba": "TC-1", "estado": "Fallido", "comentarios": "falla"},
        {"process": "Pago", "case_id": "TC-2", "expectedResult": "OK"},
    ], ensure_ascii=False).encode("utf-8")
    records = parse_json_cases(content)
    assert len(records) == 2
    assert records[0].case_id == "TC-1"
    assert records[0].status == CaseStatus.FAILED
    assert records[1].expected_result == "OK"
    assert records[1].status == CaseStatus.PENDING

@pytest.mark.parametrize("content", ["not json", "{\"a\": 1}", "42"])
def test_parse_json_rejects_invalid_files(content):
    """非数组或非法JSON被拒绝"""
    with pytest.raises(ImportFormatError):
        parse_json_cases(content)

def test_parse_json_rejects_invalid_records():
    """数组元素必须是对象"""
    with pytest.raises(InvalidRecordError) as exc_info:
        parse_json_cases("[{\"case_id\": \"TC-1\"}, \"texto\"]")
    assert exc_info.value.data == {"index": 1}

def test_parse_csv():
    """测试CSV表格解析"""
    content = (
        "Proceso,Caso Prueba,Descripción,Estado,Extra\n"
        "Login,TC-1,Inicio de sesión,Passed,x\n"
        ",,,,\n"
        "Pago,TC-2,,,y\n"
    ).encode("utf-8")
    records = parse_spreadsheet(content, filename="casos.csv")
    assert [r.case_id for r in records] == ["TC-1", "TC-2"]
    assert records[0].description == "Inicio de sesión"
    assert records[0].status == CaseStatus.PASSED
    assert records[1].status == CaseStatus.PENDING

def test_parse_excel():
    """测试Excel表格解析"""
    buffer = BytesIO()
    pd.DataFrame([
        {"casoPrueba": "TC-1", "resultadoEsperado": "Acceso concedido", "evidencia": None},
        {"casoPrueba": "TC-2", "resultadoEsperado": "Error", "evidencia": "img.png"},
    ]).to_excel(buffer, index=False)
    records = parse_spreadsheet(buffer.getvalue(), filename="casos.xlsx")
    assert [r.case_id for r in records] == ["TC-1", "TC-2"]
    assert records[0].expected_result == "Acceso concedido"
    assert records[0].evidence == ""
    assert records[1].evidence == "img.png"

def test_parse_spreadsheet_without_known_columns():
    """没有可识别的列时报错"""
    with pytest.raises(ImportFormatError):
        parse_spreadsheet(b"foo,bar\n1,2\n", filename="casos.csv")

def test_export_cases_json():
    """导出文件名包含日期，内容可再次导入"""
    cases = [TestCase(case_id="TC-1", comments="nota", status=CaseStatus.NOT_APPLICABLE)]
    filename, content = export_cases_json(cases, today=date(2026, 10, 18))
    assert filename == "testware_export_2026-10-18.json"
    data = json.loads(content)
    assert data[0]["id"] == cases[0].id
    assert data[0]["status"] == "N/A"

    [record] = parse_json_cases(content)
    assert record.comments == "nota"
    assert record.status == CaseStatus.NOT_APPLICABLE
