"""Phase execution, cancellation, shutdown and run records."""
