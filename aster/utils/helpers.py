"""
工具函数集合 - aster 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 字符串工具：truncate_string, safe_filename, preview
"""

from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """确保目录存在，不存在则递归创建，返回原路径。"""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 aster 数据目录（~/.aster）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".aster")


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """截断字符串到指定最大长度（包含后缀）。"""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def preview(s: str | None, max_len: int = 80) -> str:
    """日志预览：压平换行后截断。"""
    return truncate_string((s or "").replace("\n", " "), max_len)


def safe_filename(name: str) -> str:
    """
    将字符串转换为安全的文件名。

    替换的不安全字符包括：< > : " / \\ | ? *
    """
    unsafe = '<>:"/\\|?*'
    for char in unsafe:
        name = name.replace(char, "_")
    return name.strip()
