from typing import Any, Optional


class CollabError(Exception):
    """协作核心异常基类

    Attributes:
        message: 面向用户的提示
        code: 对应的HTTP状态码
        data: 附加数据
    """
    code: int = 400
    default_message: str = "协作操作失败"

    def __init__(self, message: Optional[str] = None, code: Optional[int] = None, data: Any = None):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.data = data
        super().__init__(self.message)


# ---------- 校验拒绝：同步拒绝，不发生任何写入 ----------

class ValidationRejected(CollabError):
    code = 422
    default_message = "输入未通过校验"


class FailedStatusRequirementsError(ValidationRejected):
    default_message = "标记为失败前必须填写备注和证据"


class UnknownFieldError(ValidationRejected):
    default_message = "不支持编辑的字段"


class InvalidSessionCodeError(ValidationRejected):
    default_message = "请输入有效的会话码"


class ReadOnlySessionError(ValidationRejected):
    code = 403
    default_message = "观察者模式下无法编辑"


class NotInSessionError(ValidationRejected):
    code = 409
    default_message = "当前未加入任何会话"


class CaseNotFoundError(ValidationRejected):
    code = 404
    default_message = "用例不存在"


class ReportInputError(ValidationRejected):
    default_message = "报告信息不完整"


# ---------- 会话生命周期 ----------

class SessionNotFoundError(CollabError):
    code = 404
    default_message = "会话不存在"


class AuthenticationRequiredError(CollabError):
    code = 401
    default_message = "请先登录"


class SessionCreateError(CollabError):
    code = 503
    default_message = "创建会话失败"


class SessionJoinError(CollabError):
    code = 503
    default_message = "加入会话失败"


# ---------- 存储 ----------

class StoreError(CollabError):
    code = 503
    default_message = "会话存储不可用"


class SessionExistsError(StoreError):
    code = 409
    default_message = "会话码已被占用"


# ---------- 导入 / AI ----------

class ImportFormatError(CollabError):
    default_message = "导入文件格式无效"


class InvalidRecordError(ImportFormatError):
    default_message = "用例记录格式无效"


class AIAnalysisError(CollabError):
    code = 502
    default_message = "AI分析生成失败"
