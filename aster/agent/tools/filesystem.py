"""
文件系统工具模块 (agent/tools/filesystem.py)

模块职责：
    提供4个文件系统相关的内置工具：
      - ReadTool (Read):   读取文件内容（支持按行偏移/限制）
      - WriteTool (Write): 写入文件内容（自动创建父目录）
      - EditTool (Edit):   精确替换文件中的文本片段
      - LsTool (Ls):       列出目录内容

安全设计：
    工具不自行解析路径，统一调用 sandbox.resolve_path()：
    相对路径相对于沙箱工作目录，任何逃逸出工作目录的路径都会被沙箱拒绝。
    失败统一抛出 ToolExecutionError，由沙箱记录为 ToolCall 失败。
"""

from typing import TYPE_CHECKING, Any

from aster.agent.tools.base import Tool
from aster.errors import ToolExecutionError

if TYPE_CHECKING:
    from aster.sandbox.base import Sandbox


class ReadTool(Tool):
    """文件读取工具。类比 Java: Files.readAllLines(Path) 再按行切片。"""

    @property
    def name(self) -> str:
        return "Read"

    @property
    def description(self) -> str:
        return "Read the contents of a file in the working directory. Optionally read a range of lines."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The file path to read, relative to the working directory"
                },
                "offset": {
                    "type": "integer",
                    "description": "1-based line number to start reading from",
                    "minimum": 1
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of lines to read",
                    "minimum": 1
                }
            },
            "required": ["path"]
        }

    async def execute(
        self,
        sandbox: "Sandbox",
        path: str,
        offset: int | None = None,
        limit: int | None = None,
        **kwargs: Any,
    ) -> str:
        file_path = sandbox.resolve_path(path)
        if not file_path.exists():
            raise ToolExecutionError(f"File not found: {path}")
        if not file_path.is_file():
            raise ToolExecutionError(f"Not a file: {path}")

        content = await sandbox.read_text(path)
        if offset is None and limit is None:
            return content

        lines = content.splitlines(keepends=True)
        start = (offset or 1) - 1
        end = start + limit if limit else len(lines)
        return "".join(lines[start:end])


class WriteTool(Tool):
    """文件写入工具，父目录不存在时自动创建。"""

    @property
    def name(self) -> str:
        return "Write"

    @property
    def description(self) -> str:
        return "Write content to a file in the working directory. Creates parent directories if needed."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The file path to write to, relative to the working directory"
                },
                "content": {
                    "type": "string",
                    "description": "The content to write"
                }
            },
            "required": ["path", "content"]
        }

    async def execute(self, sandbox: "Sandbox", path: str, content: str, **kwargs: Any) -> str:
        written = await sandbox.write_text(path, content)
        return f"Successfully wrote {written} bytes to {path}"


class EditTool(Tool):
    """
    文件编辑工具（精确文本替换）。

    要求旧文本在文件中精确存在且唯一（出现多次会拒绝，避免误改）。
    """

    @property
    def name(self) -> str:
        return "Edit"

    @property
    def description(self) -> str:
        return "Edit a file by replacing old_text with new_text. The old_text must exist exactly once in the file."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The file path to edit"
                },
                "old_text": {
                    "type": "string",
                    "description": "The exact text to find and replace"
                },
                "new_text": {
                    "type": "string",
                    "description": "The text to replace with"
                }
            },
            "required": ["path", "old_text", "new_text"]
        }

    async def execute(self, sandbox: "Sandbox", path: str, old_text: str, new_text: str, **kwargs: Any) -> str:
        file_path = sandbox.resolve_path(path)
        if not file_path.exists():
            raise ToolExecutionError(f"File not found: {path}")

        content = await sandbox.read_text(path)
        count = content.count(old_text)
        if count == 0:
            raise ToolExecutionError("old_text not found in file. Make sure it matches exactly.")
        if count > 1:
            raise ToolExecutionError(
                f"old_text appears {count} times. Please provide more context to make it unique."
            )

        await sandbox.write_text(path, content.replace(old_text, new_text, 1))
        return f"Successfully edited {path}"


class LsTool(Tool):
    """目录列表工具，目录名以 / 结尾。"""

    @property
    def name(self) -> str:
        return "Ls"

    @property
    def description(self) -> str:
        return "List the contents of a directory in the working directory."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The directory path to list (defaults to the working directory)"
                }
            },
        }

    async def execute(self, sandbox: "Sandbox", path: str = ".", **kwargs: Any) -> str:
        dir_path = sandbox.resolve_path(path)
        if not dir_path.exists():
            raise ToolExecutionError(f"Directory not found: {path}")
        if not dir_path.is_dir():
            raise ToolExecutionError(f"Not a directory: {path}")

        entries = await sandbox.list_dir(path)
        if not entries:
            return f"Directory {path} is empty"
        return "\n".join(f"{name}/" if is_dir else name for name, is_dir in entries)
