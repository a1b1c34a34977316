# lochub/providers/__init__.py
"""翻译提供方：契约基类、分块提供方与调试实现。"""
