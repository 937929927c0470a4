"""aster 命令行界面。"""
