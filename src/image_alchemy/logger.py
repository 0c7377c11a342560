"""
统一的日志处理模块
使用 loguru 提供一致的日志接口，支持日志文件输出
"""
import logging
import sys
import threading
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    配置全局 loguru logger

    Args:
        level: 控制台日志级别
        log_file: 日志文件路径，为 None 时不写文件
    """
    logger.remove()  # 移除默认处理器

    # 添加控制台输出（仅在有stderr时）
    if sys.stderr is not None:
        logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level.upper(), colorize=True)

    # 添加文件输出（自动轮转，保留最近7天）
    if log_file:
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="1 day",
            retention="7 days",
            compression="zip",
            encoding="utf-8",
        )


class LoguruHandler:
    """
    Loguru 日志处理器包装类
    为每个请求的日志加上请求标识前缀
    """

    def __init__(self, file_id: Optional[str] = None):
        self.file_id = file_id

    def _format_message(self, message: str) -> str:
        if self.file_id:
            return f"[{self.file_id}] {message}"
        return message

    def _output(self, message: str, level: str = "INFO"):
        # depth=2 把调用位置指向真正的调用者
        logger.opt(depth=2).log(level, self._format_message(message))

    def log(self, message: str, level: str = "INFO"):
        self._output(message, level.upper())

    def info(self, message: str):
        self._output(message, "INFO")

    def error(self, message: str):
        self._output(message, "ERROR")

    def success(self, message: str):
        self._output(message, "SUCCESS")

    def warning(self, message: str):
        self._output(message, "WARNING")

    def debug(self, message: str):
        self._output(message, "DEBUG")


def create_logger(file_id: Optional[str] = None) -> LoguruHandler:
    """
    工厂函数：创建日志处理器实例

    Args:
        file_id: 请求标识符，用于并发处理时区分日志来源
    """
    return LoguruHandler(file_id)


Logger = LoguruHandler


class InterceptHandler(logging.Handler):
    """把标准库 logging 的记录转发给 loguru (Pillow 使用标准库 logging)"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


ENGINE_LOGGER = "PIL"
_intercept_lock = threading.Lock()
_intercept_users = 0
_intercept_handler = InterceptHandler()


def install_engine_log_handler() -> None:
    """请求开始时挂载拦截器；并发请求共享同一个处理器（引用计数）"""
    global _intercept_users
    with _intercept_lock:
        if _intercept_users == 0:
            logging.getLogger(ENGINE_LOGGER).addHandler(_intercept_handler)
        _intercept_users += 1


def remove_engine_log_handler() -> None:
    """请求结束时卸载拦截器，最后一个请求退出时真正移除"""
    global _intercept_users
    with _intercept_lock:
        if _intercept_users == 0:
            return
        _intercept_users -= 1
        if _intercept_users == 0:
            logging.getLogger(ENGINE_LOGGER).removeHandler(_intercept_handler)


def engine_log_handler_users() -> int:
    with _intercept_lock:
        return _intercept_users
