"""Terminal chat client: session control, reconciliation and display."""
