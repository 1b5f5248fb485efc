"""Move-by-move chess game review driven by a UCI engine."""
