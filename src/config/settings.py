from pydantic import Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
import os

# 获取项目根目录
BASE_DIR = Path(__file__).resolve().parent.parent.parent

class AIConfig(BaseSettings):
    """AI模型配置"""
    AI_ZHIPU_API_KEY: str = Field(
        default="",  # 允许空值，但会在使用时检查
        description="智谱AI API密钥"
    )
    AI_ZHIPU_MODEL_CHAT: str = Field("glm-4-flash", description="对话模型名称")
    AI_TEMPERATURE: float = Field(0.2, description="采样温度")
    AI_TIMEOUT: int = Field(120, description="请求超时(秒)")
    AI_REPORT_LANGUAGE: str = Field("Spanish", description="分析报告输出语言")

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="",  # 不使用前缀，因为属性名已包含前缀
        extra="ignore",
        case_sensitive=True
    )

class LogConfig(BaseSettings):
    """日志配置"""
    LOG_LEVEL: str = Field("INFO", description="日志级别")
    LOG_FILE: str = Field(str(BASE_DIR / "logs/app.log"), description="日志文件路径")
    LOG_SESSION_FILE: str = Field(
        str(BASE_DIR / "logs/session.log"),
        description="协作会话事件日志文件路径(为空时不单独记录)"
    )
    LOG_FORMAT: str = Field(
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>",
        description="日志格式"
    )
    LOG_ROTATION: str = Field("500 MB", description="日志轮转大小")
    LOG_RETENTION: str = Field("10 days", description="日志保留时间")

    model_config = ConfigDict(
        env_file="",  # 禁用环境变量文件
        env_prefix="",
        extra="ignore",
        case_sensitive=True
    )

    @field_validator("LOG_LEVEL")
    def validate_log_level(cls, v: str) -> str:
        """验证日志级别"""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            import warnings
            warnings.warn(f"无效的日志级别: {v}，使用默认值: INFO")
            return "INFO"
        return v

class DatabaseConfig(BaseSettings):
    """数据库配置"""
    DB_URL: str = Field(
        default=f"sqlite+aiosqlite:///{BASE_DIR}/testware.db",
        description="数据库连接URL(异步驱动)"
    )
    DB_ECHO: bool = Field(False, description="是否打印SQL语句")

    model_config = ConfigDict(
        env_file="",
        env_prefix="",
        extra="ignore",
        case_sensitive=True
    )

class SessionConfig(BaseSettings):
    """协作会话配置"""
    SESSION_CODE_ALPHABET: str = Field(
        "ABCDEFGHIJKLMNPQRSTUVWXYZ123456789",
        description="会话码字符集(不含易混淆字符)"
    )
    SESSION_CODE_LENGTH: int = Field(6, description="会话码长度")
    SESSION_CREATE_ATTEMPTS: int = Field(5, description="会话码冲突时的最大尝试次数")
    SESSION_IDLE_MINUTES: float = Field(20, description="无操作自动关闭会话的分钟数")
    SESSION_IDLE_CHECK_SECONDS: float = Field(15, description="空闲检查间隔(秒)")
    SESSION_POLL_INTERVAL: float = Field(2.0, description="轮询订阅间隔(秒)")
    SESSION_MAX_SUBSCRIPTION_FAILURES: int = Field(5, description="订阅连续失败多少次后判定连接丢失并离开会话")
    PRESENCE_STALE_SECONDS: float = Field(300, description="参与者心跳过期时间(秒)")
    PRESENCE_HEARTBEAT_SECONDS: float = Field(60, description="在线心跳间隔(秒)")

    model_config = ConfigDict(
        env_file="",
        env_prefix="",
        extra="ignore",
        case_sensitive=True
    )

    @field_validator("SESSION_CODE_ALPHABET")
    def validate_alphabet(cls, v: str) -> str:
        """验证会话码字符集"""
        v = v.strip().upper()
        if len(set(v)) < 2:
            raise ValueError("会话码字符集至少需要两个不同字符")
        return v

class StoreConfig(BaseSettings):
    """会话存储配置"""
    STORE_BACKEND: str = Field("sql", description="服务端存储后端: sql/memory")
    STORE_API_URL: str = Field("http://127.0.0.1:8000", description="客户端访问的存储服务地址")
    STORE_TIMEOUT: float = Field(10.0, description="存储服务请求超时(秒)")

    model_config = ConfigDict(
        env_file="",
        env_prefix="",
        extra="ignore",
        case_sensitive=True
    )

    @field_validator("STORE_BACKEND")
    def validate_backend(cls, v: str) -> str:
        """验证存储后端"""
        v = v.lower()
        if v not in {"sql", "memory"}:
            import warnings
            warnings.warn(f"无效的存储后端: {v}，使用默认值: sql")
            return "sql"
        return v

class Settings(BaseSettings):
    """应用配置"""
    # 基础配置
    APP_NAME: str = Field("TestWare", description="应用名称")
    APP_VERSION: str = Field("1.0.0", description="应用版本")
    DEBUG: bool = Field(False, description="调试模式")
    HOST: str = Field("0.0.0.0", description="服务监听地址")
    PORT: int = Field(8000, description="服务监听端口")

    # 路径配置
    BASE_DIR: Path = Field(default=BASE_DIR, description="项目根目录")

    # 子配置
    ai: AIConfig = Field(default_factory=AIConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_prefix=""
    )

    def __init__(self, **kwargs):
        # 从 .env 文件加载配置
        from dotenv import dotenv_values

        env_path = BASE_DIR / ".env"
        env_config = dotenv_values(env_path) if env_path.exists() else {}
        # 进程环境变量优先于 .env 文件
        env_config = {**env_config, **os.environ}

        # 按前缀拆分到各子配置
        groups = {
            "ai": (AIConfig, ("AI_",)),
            "log": (LogConfig, ("LOG_",)),
            "db": (DatabaseConfig, ("DB_",)),
            "session": (SessionConfig, ("SESSION_", "PRESENCE_")),
            "store": (StoreConfig, ("STORE_",)),
        }
        for key, (config_cls, prefixes) in groups.items():
            values = {
                k: v for k, v in env_config.items()
                if v is not None and k.startswith(prefixes)
            }
            if values and key not in kwargs:
                kwargs[key] = config_cls(**values)

        # 更新基础配置
        if 'APP_NAME' in env_config and 'APP_NAME' not in kwargs:
            kwargs['APP_NAME'] = env_config['APP_NAME']
        if 'DEBUG' in env_config and 'DEBUG' not in kwargs:
            kwargs['DEBUG'] = str(env_config['DEBUG']).lower() == 'true'
        for key in ("HOST", "PORT"):
            if key in env_config and key not in kwargs:
                kwargs[key] = env_config[key]

        super().__init__(**kwargs)
        self._init_directories()

        # 只在主进程中打印配置信息
        if self.DEBUG and not os.environ.get('RELOAD_PROCESS'):
            self._print_debug_info()

    def _init_directories(self):
        """初始化必要的目录"""
        log_dir = Path(self.log.LOG_FILE).parent
        log_dir.mkdir(parents=True, exist_ok=True)

        # 确保sqlite数据库目录存在
        for prefix in ("sqlite+aiosqlite:///", "sqlite:///"):
            if self.db.DB_URL.startswith(prefix):
                db_path = self.db.DB_URL.replace(prefix, "")
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
                break

    def _print_debug_info(self):
        """打印调试信息"""
        print("\n=== 配置加载信息 ===")
        print(f"项目根目录: {self.BASE_DIR}")
        print(f"日志级别: {self.log.LOG_LEVEL}")
        print(f"日志文件: {self.log.LOG_FILE}")
        print(f"存储后端: {self.store.STORE_BACKEND}")
        print(f"数据库URL: {self.db.DB_URL}")
        print(f"会话空闲关闭: {self.session.SESSION_IDLE_MINUTES} 分钟")
        print(f"AI对话模型: {self.ai.AI_ZHIPU_MODEL_CHAT}")
        print(f"AI密钥: {'已设置' if self.ai.AI_ZHIPU_API_KEY else '未设置'}")
        print("===================\n")

# 创建全局配置实例
settings = Settings()

# 导出配置实例
__all__ = ["settings", "Settings"]
