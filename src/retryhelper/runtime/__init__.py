"""Runtime layer: retry engine, concurrency primitives, observability."""
