"""Support desk relay: bot DMs, web chat and operator forum threads."""
