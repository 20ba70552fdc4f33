"""Makes `tests.fakes` importable from the test modules."""
