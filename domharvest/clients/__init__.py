"""Browser adapters."""

from .browser import PageDriver, PageFactory, PlaywrightPage, PlaywrightPageFactory

__all__ = ["PageDriver", "PageFactory", "PlaywrightPage", "PlaywrightPageFactory"]
