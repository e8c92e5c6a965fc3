"""CLI 子包（`tool-runtime` 命令入口）。"""
