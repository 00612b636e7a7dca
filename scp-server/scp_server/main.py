from dotenv import load_dotenv

# 加载环境变量
load_dotenv()

# 导入配置
from scp_server.config import settings
from scp_server.factory import create_app
from scp_server.logging.config import StructuredLogger, get_structured_logger

# 配置结构化日志
StructuredLogger.setup_logging(
    log_level=settings.log_level,
    enable_json=settings.log_format == "json"
)
logger = get_structured_logger("scp-server")

# 创建应用实例
app = create_app()
