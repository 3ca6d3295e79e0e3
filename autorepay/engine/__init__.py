"""Pure valuation and planning logic plus transaction assembly."""
