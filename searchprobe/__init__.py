"""Search index freshness probe for SharePoint Online."""

__version__ = "0.1.0"
