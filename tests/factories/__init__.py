"""Factory Boy factories and fake collaborators for test data generation.

Available helpers
-----------------
PrincipalFactory        : free-plan principal dict with an open quota window
FakeFetchDriver         : scripted FetchDriver (tests.factories.drivers)
FakeScreenshotDriver    : scripted ScreenshotDriver (tests.factories.drivers)
FakeBrowser             : stand-in for a Playwright Browser (tests.factories.browser)
"""

from __future__ import annotations

from tests.factories.principals import PrincipalFactory, create_principal

__all__ = ["PrincipalFactory", "create_principal"]
