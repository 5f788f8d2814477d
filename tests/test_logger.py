from src.logger.logger import SESSION_MODULES, _is_session_record


def test_session_log_filter():
    """只有协作核心的日志写入会话日志"""
    assert SESSION_MODULES == ("src.collab",)
    assert _is_session_record({"name": "src.collab.lifecycle"})
    assert _is_session_record({"name": "src.collab.sql_store"})
    assert not _is_session_record({"name": "src.api.middlewares.logger"})
    assert not _is_session_record({"name": "src.report.analysis"})
