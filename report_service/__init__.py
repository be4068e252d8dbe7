"""
Report Service - Task preview to PDF report generation.

Captures the rendered task preview with Playwright/Chromium and assembles
it with an optional cover, change history and table of contents into a
single PDF returned synchronously to the caller.
"""

__version__ = "0.1.0"
