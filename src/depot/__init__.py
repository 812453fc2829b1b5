"""depot: a pull-through cache for build artifacts."""
