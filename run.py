"""启动协作会话服务

监听地址、端口和热重载均来自配置(HOST / PORT / DEBUG)。
"""
import sys
from pathlib import Path

# 添加项目根目录到Python路径
sys.path.insert(0, str(Path(__file__).parent.absolute()))

import uvicorn
from src.config.settings import settings


def main():
    uvicorn.run(
        "src.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.log.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
