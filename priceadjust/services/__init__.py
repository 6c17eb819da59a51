"""Services for the receipt core."""
