"""Configuration for docrank: environment settings and ranking tunables."""
