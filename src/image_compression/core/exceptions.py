"""项目内使用的自定义异常定义。"""


class ImageCompressionError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImageCompressionError):
    """配置或设置值不合法时抛出。"""


class AlreadyInitializedError(ImageCompressionError):
    """存储区域被重复初始化时抛出。"""


class StorageError(ImageCompressionError):
    """清理或重建工作目录失败。"""


class PathExhaustedError(ImageCompressionError):
    """去重后缀超过上限，无法生成唯一路径。"""


class SettingsStoreError(ImageCompressionError):
    """读写设置文件失败。"""


class MetadataStoreError(ImageCompressionError):
    """读写元数据文件失败。"""


class TransportDecodeError(ImageCompressionError):
    """传输编码（header,base64）格式错误，整批失败。"""


class EmptyBatchError(ImageCompressionError):
    """校验后没有任何有效图片。"""


class BatchFailedError(ImageCompressionError):
    """整批图片均未产生输出。"""


class AdapterError(ImageCompressionError):
    """单个文件压缩失败（解码、编码或写入）。"""


class UnsupportedInputError(AdapterError):
    """压缩器不接受该输入格式。"""


class ExternalToolError(ImageCompressionError):
    """外部压缩工具无法启动。"""
