from datetime import date
import json
from typing import List, Optional, Sequence, Tuple, Union

from loguru import logger

from src.collab.errors import ImportFormatError, InvalidRecordError
from src.collab.models import RawTestCase, TestCase

EXPORT_FILENAME = "testware_export_{date}.json"


def parse_json_cases(content: Union[str, bytes]) -> List[RawTestCase]:
    """解析JSON用例文件

    Args:
        content: 文件内容，顶层必须是数组

    Returns:
        List[RawTestCase]: 原始用例记录(尚未分配ID)

    Raises:
        ImportFormatError: 不是合法JSON或顶层不是数组
        InvalidRecordError: 数组中存在非对象元素
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ImportFormatError("文件编码必须为UTF-8") from e
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON解析失败: {str(e)}")
        raise ImportFormatError("请上传有效的JSON文件", data={"error": str(e)}) from e

    if not isinstance(data, list):
        raise ImportFormatError("JSON顶层必须是用例数组")

    records = []
    for index, item in enumerate(data):
        try:
            records.append(RawTestCase.from_record(item))
        except InvalidRecordError as e:
            raise InvalidRecordError(f"第 {index + 1} 条记录不是对象", data={"index": index}) from e
        except ValueError as e:
            raise InvalidRecordError(f"第 {index + 1} 条记录无效: {str(e)}", data={"index": index}) from e
    logger.info(f"JSON文件解析完成, 共 {len(records)} 条用例")
    return records


def export_cases_json(cases: Sequence[TestCase], today: Optional[date] = None) -> Tuple[str, str]:
    """导出用例为JSON文本

    Returns:
        Tuple[str, str]: (文件名, JSON文本)
    """
    filename = EXPORT_FILENAME.format(date=(today or date.today()).isoformat())
    text = json.dumps(
        [case.model_dump(mode="json") for case in cases],
        ensure_ascii=False,
        indent=2
    )
    return filename, text
