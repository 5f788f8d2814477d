import secrets
from typing import Optional

from src.config.settings import settings

from .errors import InvalidSessionCodeError


def generate_session_code(
    alphabet: Optional[str] = None,
    length: Optional[int] = None
) -> str:
    """生成会话码

    Args:
        alphabet: 字符集，默认去掉了易混淆的 O 和 0
        length: 会话码长度

    Returns:
        str: 新会话码
    """
    alphabet = alphabet or settings.session.SESSION_CODE_ALPHABET
    length = length or settings.session.SESSION_CODE_LENGTH
    return "".join(secrets.choice(alphabet) for _ in range(length))


def normalize_session_code(
    code: Optional[str],
    alphabet: Optional[str] = None,
    length: Optional[int] = None
) -> str:
    """规范化用户输入的会话码(去空白、转大写)

    Raises:
        InvalidSessionCodeError: 为空、长度不符或包含字符集以外的字符
    """
    alphabet = alphabet or settings.session.SESSION_CODE_ALPHABET
    length = length or settings.session.SESSION_CODE_LENGTH
    normalized = (code or "").strip().upper()
    if not normalized:
        raise InvalidSessionCodeError("请输入会话码")
    if len(normalized) != length or any(ch not in alphabet for ch in normalized):
        raise InvalidSessionCodeError(f"会话码格式无效: {normalized}", data={"code": normalized})
    return normalized
