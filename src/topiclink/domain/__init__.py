"""Domain layer: types, protocols, errors and events."""
