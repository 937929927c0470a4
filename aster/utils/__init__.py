"""工具函数模块。"""

from aster.utils.helpers import ensure_dir, get_data_path

__all__ = ["ensure_dir", "get_data_path"]
