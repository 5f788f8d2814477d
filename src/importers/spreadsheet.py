from io import BytesIO
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

import pandas as pd
from loguru import logger

from src.collab.errors import ImportFormatError
from src.collab.models import RawTestCase, canonical_field

SpreadsheetSource = Union[str, Path, bytes, BinaryIO]

CSV_SUFFIXES = {".csv", ".txt"}


def _read_frame(source: SpreadsheetSource, filename: Optional[str], sheet: Optional[Union[str, int]]) -> pd.DataFrame:
    name = filename or (str(source) if isinstance(source, (str, Path)) else "")
    suffix = Path(name).suffix.lower()
    if isinstance(source, bytes):
        source = BytesIO(source)

    read_options = {"dtype": str, "keep_default_na": False}
    if suffix in CSV_SUFFIXES:
        return pd.read_csv(source, **read_options)
    return pd.read_excel(source, sheet_name=sheet if sheet is not None else 0, **read_options)


def parse_spreadsheet(
    source: SpreadsheetSource,
    sheet: Optional[Union[str, int]] = None,
    filename: Optional[str] = None
) -> List[RawTestCase]:
    """解析Excel/CSV用例表格

    表头支持英文下划线、驼峰以及原表格的西语列名，无法识别的列被忽略。

    Args:
        source: 文件路径、文件内容或二进制文件对象
        sheet: 工作表名称或序号，默认第一个
        filename: 文件名，用于在传入内容时判断格式

    Returns:
        List[RawTestCase]: 原始用例记录

    Raises:
        ImportFormatError: 文件无法读取或没有可识别的列
    """
    try:
        df = _read_frame(source, filename, sheet)
    except (ValueError, OSError, KeyError) as e:
        logger.warning(f"读取表格失败: {str(e)}")
        raise ImportFormatError("无法读取表格文件", data={"error": str(e)}) from e

    columns = {}
    for column in df.columns:
        field = canonical_field(column)
        if field and field not in columns.values():
            columns[column] = field
    if not columns:
        raise ImportFormatError("表格中没有可识别的用例列", data={"columns": [str(c) for c in df.columns]})

    df = df[list(columns)].rename(columns=columns)
    if df.empty:
        return []
    # 丢弃整行为空的记录
    df = df[df.apply(lambda row: any(str(value).strip() for value in row), axis=1)]

    records = [RawTestCase.model_validate(row) for row in df.to_dict(orient="records")]
    logger.info(f"表格解析完成, 共 {len(records)} 条用例, 识别列: {list(columns.values())}")
    return records
