"""Tools 子包：描述符协议、能力（按 ToolKind）、注册表与内置工具。"""
