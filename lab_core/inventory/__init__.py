"""Material inventory: LOT arrival, FIFO consumption, alerts and traceability."""
