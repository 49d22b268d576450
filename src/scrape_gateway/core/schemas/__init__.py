"""Pydantic schemas for request validation.

Sub-modules:
    scrape   : ScrapeRequest, ScreenshotRequest
    internal : AuthSyncRequest, CreateApiKeyRequest
"""

from __future__ import annotations
