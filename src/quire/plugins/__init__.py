"""Built-in plugins shipped with quire."""
