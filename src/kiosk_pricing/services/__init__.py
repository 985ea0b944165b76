"""Price list management, bulk revisions and reports."""
