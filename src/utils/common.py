from pathlib import Path
from typing import Union
from ..logger.logger import logger

def safe_file_read(file_path: Union[str, Path], encoding: str = "utf-8") -> Union[str, None]:
    """安全地读取文件内容"""
    try:
        with open(file_path, encoding=encoding) as f:
            return f.read()
    except OSError as e:
        logger.error(f"读取文件失败: {e}")
        return None

def truncate_text(text: str, max_length: int = 2000) -> str:
    """截断过长文本(用于日志输出)

    Args:
        text: 原始文本
        max_length: 最大长度

    Returns:
        str: 截断后的文本
    """
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"...(已截断, 共 {len(text)} 字符)"
