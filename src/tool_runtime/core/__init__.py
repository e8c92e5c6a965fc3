"""核心：错误分类、事件契约、生命周期与编排。"""
