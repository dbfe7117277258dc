"""项目内使用的自定义异常定义。"""


class DatestampError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(DatestampError):
    """配置不合法时抛出。"""


class UnsupportedFormatError(DatestampError):
    """文件扩展名不在支持的格式列表中。"""


class DecodeError(DatestampError):
    """源图片无法读取或已损坏。"""


class EncodeError(DatestampError):
    """编码器未能生成输出数据。"""


class WriteError(DatestampError):
    """输出文件写入失败。"""


class OutputDirectoryError(DatestampError):
    """输出目录无法创建，整个批次无法继续。"""


class ProcessingAborted(DatestampError):
    """任务被用户中断时抛出。"""
