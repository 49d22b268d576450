"""Fetch drivers used by the scrape orchestrator.

Sub-modules:
- ``config``             : constants and tuning parameters
- ``base``               : FetchTarget / ScreenshotTarget / FetchResult and driver protocols
- ``extraction``         : BeautifulSoup-based content and title extraction
- ``http_fetcher``       : light driver (httpx GET + extraction)
- ``browser_pool``       : bounded pool of Playwright browser contexts
- ``playwright_fetcher`` : heavy driver (headless Chromium render and screenshot)
"""
