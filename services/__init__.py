"""Services of the AI sentiment pipeline."""
