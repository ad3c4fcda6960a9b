"""HTTP clients for the external campaign, CRM and personalization systems."""
