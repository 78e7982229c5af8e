# backend/recovery_engine/reporter/__init__.py
from .html import render_report
from .reporter import render_violations, to_markdown

__all__ = ["render_report", "render_violations", "to_markdown"]
