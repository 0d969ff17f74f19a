"""Feature defaults, quota limits, environment settings and logging setup."""
