"""HTTP surface for price lists, quotes and bulk revisions."""
