"""Smart system metrics: weighted CPU usage, memory pressure and trends."""
