"""Domain layer: pure progression math and event contracts."""
