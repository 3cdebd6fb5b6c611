"""ProjectSync Engine — configuration, errors, structured logging, caches and the runtime."""
