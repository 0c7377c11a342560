"""
对外接口
一次性处理单个文件或内存中的图像数据
"""
from typing import Optional, Tuple

from image_alchemy.config import Config
from image_alchemy.errors import Status
from image_alchemy.pipeline.processor import ImageProcessor

_default_processor: Optional[ImageProcessor] = None


def get_processor(config: Optional[Config] = None) -> ImageProcessor:
    """Shared processor for the default config, a fresh one otherwise"""
    global _default_processor
    if config is not None:
        return ImageProcessor(config)
    if _default_processor is None:
        _default_processor = ImageProcessor()
    return _default_processor


def process_image(query: str, input_path: str, output_path: str,
                  config: Optional[Config] = None) -> Status:
    """
    处理单个图像文件

    Args:
        query: 处理参数，例如 "w=300&h=300&fit=cover&output=webp"
        input_path: 源文件路径
        output_path: 输出文件路径 (仅在成功时写入)
        config: 处理限制，默认为 DEFAULT_CONFIG
    """
    return get_processor(config).process_file(query, input_path, output_path)


def process_bytes(query: str, data: bytes, config: Optional[Config] = None) -> Tuple[Status, bytes]:
    """处理内存中的图像数据，返回 (Status, 输出字节)"""
    return get_processor(config).process_buffer(query, data)
