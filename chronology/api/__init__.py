"""Read-only HTTP interface over the chronology engine."""
